import setuptools

VERSION = '0.1.0'

setup_params = dict(
    name='resilient-requests',
    version=VERSION,
    author='Kenneth VanderLinde',
    author_email='kwvanderlinde@gmail.com',
    keywords='requests retry cache asyncio',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    package_dir={'resilient': 'resilient'},
    include_package_data=True,
    description='An asyncio request pipeline with retries, interceptors and a two-tier response cache',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    install_requires=[
        'requests~=2.31',
        'pydantic~=2.5',
        'pydantic-settings~=2.1',
        'psutil>=5.9',
    ],
    extras_require={
        'dev': [
            'mockito~=1.4',
            'pytest>=7.4',
            'pytest-cov>=4.1',
            'ddt~=1.6',
        ]
    },
    entry_points={},
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Natural Language :: English',
        'Operating System :: OS Independent',

        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],
)


if __name__ == '__main__':
    setuptools.setup(**setup_params)
