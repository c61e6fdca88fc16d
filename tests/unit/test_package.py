"""
Import checks for the public package surface.
"""

import importlib
import pkgutil
import typing

import pytest

import roster
from roster.membership.store import StoreClient


def iter_module_names() -> list[str]:
    return sorted(
        module.name
        for module in pkgutil.walk_packages(roster.__path__, prefix="roster.")
    )


class TestPackageImports:

    @pytest.mark.parametrize("module_name", iter_module_names())
    def test_every_module_imports(self, module_name: str) -> None:
        assert importlib.import_module(module_name) is not None

    def test_top_level_exports(self) -> None:
        assert roster.MembershipMonitor.__name__ == "MembershipMonitor"
        assert roster.create_monitor is not None
        assert roster.ServerState.UP.value == "up"

    def test_store_client_annotations_resolve(self) -> None:
        """Command methods named after builtins must not shadow annotations."""
        hints = typing.get_type_hints(StoreClient.smembers)

        assert hints["return"] == set[str]
