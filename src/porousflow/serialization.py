"""Structuring/unstructuring of `attrs` classes for configuration files and restart metadata."""

from collections.abc import Mapping
from os import PathLike
from pathlib import Path
import typing

import attrs
import cattrs
import numpy as np
import yaml

from porousflow.errors import DeserializationError, SerializationError


__all__ = ["converter", "dump", "load", "dump_yaml", "load_yaml"]

T = typing.TypeVar("T")

converter = cattrs.Converter()

converter.register_unstructure_hook(np.ndarray, lambda array: array.tolist())
converter.register_structure_hook(np.ndarray, lambda value, _: np.asarray(value))


def dump(o: typing.Any) -> typing.Dict[str, typing.Any]:
    """
    Unstructure an `attrs` instance into a dictionary of primitives.

    :param o: The `attrs` instance to unstructure.
    :return: A dictionary representation of the instance.
    """
    if not attrs.has(type(o)):
        raise SerializationError(
            f"Cannot serialize object of type {type(o).__name__!r}. Only attrs classes are supported."
        )
    return converter.unstructure(o)


def load(typ: typing.Type[T], data: typing.Mapping[str, typing.Any]) -> T:
    """
    Structure a mapping into an instance of `typ`.

    :param typ: The `attrs` class to build.
    :param data: The mapping to structure.
    :return: An instance of `typ`.
    """
    try:
        return converter.structure(dict(data), typ)
    except (cattrs.BaseValidationError, TypeError, KeyError) as exc:
        raise DeserializationError(
            f"Failed to load {typ.__name__} from data: {exc}"
        ) from exc


def dump_yaml(o: typing.Any, filepath: typing.Union[str, PathLike]) -> Path:
    """
    Write an `attrs` instance to a YAML file.

    :param o: The `attrs` instance to write.
    :param filepath: Destination path.
    :return: The resolved path written to.
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        yaml.safe_dump(dump(o), f, default_flow_style=False, sort_keys=False)
    return path


def load_yaml(typ: typing.Type[T], filepath: typing.Union[str, PathLike]) -> T:
    """
    Read an `attrs` instance from a YAML file.

    :param typ: The `attrs` class to build.
    :param filepath: Source path.
    :return: An instance of `typ`.
    """
    path = Path(filepath)
    if not path.is_file():
        raise DeserializationError(f"File {path} does not exist")
    with path.open("r") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, Mapping):
        raise DeserializationError(
            f"Expected a mapping at the top level of {path}, got {type(data).__name__}"
        )
    return load(typ, data)
