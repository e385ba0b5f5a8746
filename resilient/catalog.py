"""
Thin consumers of the executor: the home feed and search.

Section content is a tagged union. Each section names its `content_type`, and
every item in it decodes into exactly one of the content classes below, rather
than one flat record with a long tail of optional fields.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from .executor import NetworkService
from .model import CachePolicy, HttpMethod, RequestDescriptor
from .util import decode_value

logger = logging.getLogger(__name__)


def _json(name: str, **kwargs):
    return field(metadata={'json': name}, **kwargs)


@dataclass(frozen=True)
class Podcast:
    podcast_id: str
    name: str
    description: str = ''
    avatar_url: str = ''
    episode_count: Optional[int] = None
    duration: int = 0
    language: Optional[str] = None
    priority: Optional[int] = None
    popularity_score: Optional[int] = _json('popularityScore', default=None)
    score: float = 0.0


@dataclass(frozen=True)
class Episode:
    episode_id: str
    name: str
    podcast_id: Optional[str] = None
    podcast_name: Optional[str] = None
    author_name: Optional[str] = None
    description: str = ''
    avatar_url: str = ''
    duration: int = 0
    season_number: Optional[int] = None
    episode_type: Optional[str] = None
    number: Optional[int] = None
    audio_url: Optional[str] = None
    release_date: Optional[str] = None
    chapters: List[Any] = field(default_factory=list)
    score: float = 0.0


@dataclass(frozen=True)
class AudioBook:
    audiobook_id: str
    name: str
    author_name: Optional[str] = None
    description: str = ''
    avatar_url: str = ''
    duration: int = 0
    language: Optional[str] = None
    release_date: Optional[str] = None
    score: float = 0.0


@dataclass(frozen=True)
class Article:
    article_id: str
    name: str
    author_name: Optional[str] = None
    description: str = ''
    avatar_url: str = ''
    duration: int = 0
    release_date: Optional[str] = None
    score: float = 0.0


Content = Union[Podcast, Episode, AudioBook, Article]

CONTENT_TYPES: Dict[str, type] = {
    'podcast': Podcast,
    'episode': Episode,
    'audio_book': AudioBook,
    'audiobook': AudioBook,
    'audio_article': Article,
    'article': Article,
}


def decode_content(content_type: str, raw: Mapping[str, Any]) -> Content:
    """
    Decode one content item of a section whose content type is `content_type`.

    @throws ValueError
      For a content type nobody knows how to decode.
    """
    if not isinstance(content_type, str) or content_type.lower() not in CONTENT_TYPES:
        raise ValueError('Unknown content type: {!r}'.format(content_type))
    content_class = CONTENT_TYPES[content_type.lower()]
    return decode_value(content_class, dict(raw))


@dataclass(frozen=True)
class HomeSection:
    name: str
    type: str
    content_type: str
    order: int
    content: List[Content]

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> 'HomeSection':
        content_type = raw['content_type']
        return cls(name=raw['name'],
                   type=raw['type'],
                   content_type=content_type,
                   order=int(raw['order']),
                   content=[decode_content(content_type, item) for item in raw.get('content', [])])


@dataclass(frozen=True)
class Pagination:
    next_page: Optional[str] = None
    total_pages: int = 1


@dataclass(frozen=True)
class HomeSectionsPage:
    sections: List[HomeSection]
    pagination: Pagination


@dataclass(frozen=True)
class SearchSection:
    name: str
    type: str
    content_type: str
    order: str
    content: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SearchPage:
    sections: List[SearchSection] = field(default_factory=list)


class HomeRepository:
    """
    Fetches pages of the home feed. Pages are served from the cache when fresh.
    """

    endpoint = '/home_sections'

    def __init__(self, service: NetworkService) -> None:
        self.__service = service

    async def fetch_sections(self, page: int = 1) -> HomeSectionsPage:
        logger.debug('Fetching home sections, page {}'.format(page))
        descriptor = RequestDescriptor.create(self.endpoint,
                                              method=HttpMethod.GET,
                                              parameters={'page': page},
                                              prefer_cache=True)
        return await self.__service.execute(descriptor, HomeSectionsPage)


class SearchRepository:
    """
    Searches the catalog. Blank queries never reach the network.

    @param base_url
      Search lives on its own host; requests go to `<base_url>/search`.
    """

    def __init__(self, service: NetworkService, base_url: str) -> None:
        self.__service = service
        self.__base_url = base_url.rstrip('/')

    async def search(self, query: str) -> SearchPage:
        if not query.strip():
            return SearchPage(sections=[])
        descriptor = RequestDescriptor.create('{}/search'.format(self.__base_url),
                                              method=HttpMethod.GET,
                                              parameters={'q': query},
                                              cache_policy=CachePolicy.NONE)
        return await self.__service.execute(descriptor, SearchPage)
