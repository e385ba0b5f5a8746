import base64
import collections.abc
import dataclasses
import json
import typing
from typing import Any, Type


def clamp(value, min, max):
    return sorted((min, value, max))[1]


def preview(body: typing.Optional[bytes], limit: int = 1024) -> str:
    if not body:
        return ''
    try:
        text = body[:limit].decode('utf-8')
    except UnicodeDecodeError:
        return '[Binary Data]'
    if len(body) > limit:
        text += '...'
    return text


class DataclassJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        if isinstance(o, bytes):
            return base64.b64encode(o).decode('ascii')
        return super().default(o)


class DataclassJSONDecoder(json.JSONDecoder):
    """
    Decodes a JSON document straight into `class_type`.

    Nested dataclasses, lists, optionals and mappings are built recursively from
    the type hints of `class_type`.
    """

    def __init__(self, class_type: Type, **kwargs) -> None:
        super().__init__(**kwargs)
        self.__class_type = class_type

    def decode(self, s):
        result = super().decode(s)
        return decode_value(self.__class_type, result)


def decode_value(class_type: Any, value: Any) -> Any:
    """
    Build an instance of `class_type` from a JSON-compatible `value`.

    A class may take over its own decoding by defining a `from_json` classmethod,
    which is how tagged unions are dispatched.

    @throws TypeError, ValueError, KeyError
      If `value` does not have the shape `class_type` expects.
    """
    if class_type is Any or class_type is typing.Any:
        return value

    origin = typing.get_origin(class_type)
    args = typing.get_args(class_type)

    if origin is typing.Union:
        if value is None and type(None) in args:
            return None
        errors = []
        for arg in args:
            if arg is type(None):
                continue
            try:
                return decode_value(arg, value)
            except (TypeError, ValueError, KeyError) as e:
                errors.append(str(e))
        raise TypeError('No member of {} matches {!r}: {}'.format(class_type, value, '; '.join(errors)))

    if origin in (list, tuple, collections.abc.Sequence) or class_type in (list, tuple):
        if not isinstance(value, list):
            raise TypeError('Expected a list, got {}'.format(type(value).__name__))
        item_type = args[0] if args else Any
        items = [decode_value(item_type, item) for item in value]
        return tuple(items) if origin is tuple or class_type is tuple else items

    if origin in (dict, collections.abc.Mapping) or class_type is dict:
        if not isinstance(value, dict):
            raise TypeError('Expected an object, got {}'.format(type(value).__name__))
        value_type = args[1] if len(args) == 2 else Any
        return {k: decode_value(value_type, v) for k, v in value.items()}

    if hasattr(class_type, 'from_json'):
        return class_type.from_json(value)

    if dataclasses.is_dataclass(class_type):
        if not isinstance(value, dict):
            raise TypeError('Expected an object for {}, got {}'.format(class_type.__name__, type(value).__name__))
        hints = typing.get_type_hints(class_type)
        kwargs = {}
        for f in dataclasses.fields(class_type):
            if not f.init:
                continue
            key = f.metadata.get('json', f.name)
            if key not in value:
                if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                    raise KeyError('Missing field "{}" for {}'.format(key, class_type.__name__))
                continue
            kwargs[f.name] = decode_value(hints[f.name], value[key])
        return class_type(**kwargs)

    if class_type is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if class_type in (int, float, str, bool):
        if not isinstance(value, class_type) or (class_type is int and isinstance(value, bool)):
            raise TypeError('Expected {}, got {!r}'.format(class_type.__name__, value))
        return value
    if class_type is bytes:
        return value.encode('utf-8') if isinstance(value, str) else bytes(value)
    return class_type(value)
