from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from archinstall.tui import EditMenu, MenuItem, MenuItemGroup, SelectMenu
from archinstall.tui.result import ResultType

from zroot_installer.errors import Cancelled


class Dialog(ABC):
    """Interactive primitives the wizard depends on.

    `items` are (label, key) pairs. Every primitive raises `Cancelled` when
    the operator backs out, which is distinct from an empty answer.
    """

    @abstractmethod
    def checklist(self, header: str, items: list[tuple[str, Any]], preselected: list[Any] | None = None) -> list[Any]: ...

    @abstractmethod
    def select(self, header: str, items: list[tuple[str, Any]], preset: Any = None) -> Any: ...

    @abstractmethod
    def text(self, title: str, header: str, default: str | None = None) -> str: ...

    @abstractmethod
    def secret(self, title: str, header: str) -> str: ...

    @abstractmethod
    def notify(self, header: str) -> None: ...


def _group(items: list[tuple[str, Any]], focus: Any = None) -> MenuItemGroup:
    menu_items = [MenuItem(label, key) for label, key in items]
    focus_item = next((it for it in menu_items if focus is not None and it.value == focus), None)
    return MenuItemGroup(menu_items, focus_item=focus_item) if focus_item else MenuItemGroup(menu_items)


class TuiDialog(Dialog):
    """Dialog on archinstall's curses menus. Must run inside `Tui()`."""

    def checklist(self, header: str, items: list[tuple[str, Any]], preselected: list[Any] | None = None) -> list[Any]:
        group = _group(items)
        if preselected:
            group.set_selected_by_value(preselected)

        result = SelectMenu(group, multi=True, allow_skip=True, header=header).run()
        if result.type_ == ResultType.Skip:
            raise Cancelled(header)
        return [item.value for item in result.items()]

    def select(self, header: str, items: list[tuple[str, Any]], preset: Any = None) -> Any:
        result = SelectMenu(_group(items, preset), allow_skip=True, header=header).run()
        if result.type_ == ResultType.Skip or result.item() is None:
            raise Cancelled(header)
        return result.item().value

    def text(self, title: str, header: str, default: str | None = None) -> str:
        result = EditMenu(title, header=header, default_text=default, allow_skip=True).input()
        if result.type_ == ResultType.Skip:
            raise Cancelled(title)
        return result.text() or ""

    def secret(self, title: str, header: str) -> str:
        result = EditMenu(title, header=header, hide_input=True, allow_skip=True).input()
        if result.type_ == ResultType.Skip:
            raise Cancelled(title)
        return result.text() or ""

    def notify(self, header: str) -> None:
        SelectMenu(MenuItemGroup([MenuItem("OK", None)]), header=header).run()
