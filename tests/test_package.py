"""Import-time checks for the kbase package."""

import importlib
import typing

import pytest

from kbase.file_store import FileStore
from kbase.protocol import FileStoreProtocol
from kbase.synchronizer import ItemSynchronizer

MODULES = [
    "kbase",
    "kbase.api",
    "kbase.backend",
    "kbase.cli",
    "kbase.config",
    "kbase.errors",
    "kbase.field_mapper",
    "kbase.file_store",
    "kbase.frontmatter",
    "kbase.index_store",
    "kbase.logging_config",
    "kbase.params",
    "kbase.protocol",
    "kbase.status_registry",
    "kbase.synchronizer",
    "kbase.tag_registry",
    "kbase.type_registry",
    "kbase.types",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    importlib.import_module(name)


@pytest.mark.parametrize("method", [
    FileStore.list_partitions,
    FileStore.list_type_dirs,
    FileStoreProtocol.list_partitions,
    ItemSynchronizer.search,
    ItemSynchronizer.search_by_tag,
])
def test_annotations_after_list_method_resolve(method):
    # Classes that define a method named list still mean the builtin here
    hints = typing.get_type_hints(method)
    assert typing.get_origin(hints["return"]) is list
