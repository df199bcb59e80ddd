#!/usr/bin/env python3
"""GTK front-end: pick a package, convert it, inspect the dependency report and recipe."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

import gi

from .converter import DEFAULT_RECIPE_NAME, ConversionResult, RecipeConverter
from .extractor import SUPPORTED_SUFFIXES
from .knowledge import KnowledgeBase
from .utils import Pkg2NixError

gi.require_version("Gtk", "3.0")
from gi.repository import GLib, Gtk  # noqa: E402

RESOLVED = "resolved"
MISSING = "missing"


def dependency_rows(result: ConversionResult) -> list[tuple[str, str]]:
    """Flatten a conversion result into ``(name, state)`` rows, resolved first."""
    rows = [(name, RESOLVED) for name in result.packages]
    rows.extend((name, MISSING) for name in result.missing)
    return rows


class ConverterWindow(Gtk.Window):
    """Single window with a header bar, a status bar and three result tabs."""

    def __init__(
        self,
        source: Optional[str],
        knowledge: Optional[KnowledgeBase] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(title="pkg2nix")
        self.set_default_size(900, 620)

        self.logger = logger or logging.getLogger("pkg2nix.gui")
        self.converter = RecipeConverter(knowledge=knowledge, logger=self.logger)
        self.worker: Optional[threading.Thread] = None

        self._build_header()
        self._build_body()

        if source:
            self.source_entry.set_text(source)

    # layout

    def _build_header(self) -> None:
        header = Gtk.HeaderBar(title="pkg2nix", subtitle="Nix recipes from .deb packages and AppImages")
        header.set_show_close_button(True)
        self.set_titlebar(header)

        chooser = Gtk.FileChooserButton(title="Choose a package", action=Gtk.FileChooserAction.OPEN)
        packages = Gtk.FileFilter()
        packages.set_name("Debian packages and AppImages")
        for suffix in SUPPORTED_SUFFIXES:
            packages.add_pattern(f"*{suffix}")
        packages.add_pattern("*.AppImage")
        chooser.add_filter(packages)
        chooser.connect("file-set", lambda button: self.source_entry.set_text(button.get_filename() or ""))
        header.pack_start(chooser)

        self.convert_button = Gtk.Button(label="Convert")
        self.convert_button.get_style_context().add_class("suggested-action")
        self.convert_button.connect("clicked", self._on_convert)
        header.pack_end(self.convert_button)

    def _build_body(self) -> None:
        body = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=6)
        body.set_border_width(10)
        self.add(body)

        self.info_bar = Gtk.InfoBar()
        self.info_bar.set_show_close_button(True)
        self.info_bar.connect("response", lambda bar, _response: bar.hide())
        self.info_label = Gtk.Label(xalign=0)
        self.info_label.set_line_wrap(True)
        self.info_bar.get_content_area().add(self.info_label)
        self.info_bar.set_no_show_all(True)
        body.pack_start(self.info_bar, False, False, 0)

        self.source_entry = Gtk.Entry(placeholder_text="URL or path of a .deb / .AppImage")
        self.source_entry.connect("activate", self._on_convert)
        body.pack_start(self.source_entry, False, False, 0)

        switches = Gtk.FlowBox(selection_mode=Gtk.SelectionMode.NONE, max_children_per_line=3)
        self.skip_deps_toggle = Gtk.CheckButton(label="Skip dependency resolution")
        self.upstream_toggle = Gtk.CheckButton(label="callPackage style (for nixpkgs)")
        switches.add(self.skip_deps_toggle)
        switches.add(self.upstream_toggle)
        body.pack_start(switches, False, False, 0)

        self.summary = Gtk.Label(label="No package converted yet.", xalign=0)
        body.pack_start(self.summary, False, False, 0)

        tabs = Gtk.Notebook()
        tabs.append_page(self._dependency_view(), Gtk.Label(label="Dependencies"))
        self.recipe_buffer = Gtk.TextBuffer()
        tabs.append_page(self._text_view(self.recipe_buffer), Gtk.Label(label=DEFAULT_RECIPE_NAME))
        self.log_buffer = Gtk.TextBuffer()
        tabs.append_page(self._text_view(self.log_buffer), Gtk.Label(label="Log"))
        body.pack_start(tabs, True, True, 0)

        self.status_bar = Gtk.Statusbar()
        self.status_context = self.status_bar.get_context_id("conversion")
        body.pack_end(self.status_bar, False, False, 0)

    def _dependency_view(self) -> Gtk.Widget:
        self.dependency_store = Gtk.ListStore(str, str)
        tree = Gtk.TreeView(model=self.dependency_store)
        for column_index, heading in enumerate(("Package / library", "State")):
            tree.append_column(Gtk.TreeViewColumn(heading, Gtk.CellRendererText(), text=column_index))
        return self._scrolled(tree)

    def _text_view(self, buffer: Gtk.TextBuffer) -> Gtk.Widget:
        view = Gtk.TextView(buffer=buffer, editable=False, monospace=True)
        return self._scrolled(view)

    @staticmethod
    def _scrolled(child: Gtk.Widget) -> Gtk.Widget:
        window = Gtk.ScrolledWindow(hexpand=True, vexpand=True)
        window.add(child)
        return window

    # actions

    def _on_convert(self, _widget: Gtk.Widget) -> None:
        source = self.source_entry.get_text().strip()
        if not source or (self.worker and self.worker.is_alive()):
            return

        options = {
            "skip_deps": self.skip_deps_toggle.get_active(),
            "upstream": self.upstream_toggle.get_active(),
            "output_path": Path.cwd() / DEFAULT_RECIPE_NAME,
        }
        self.convert_button.set_sensitive(False)
        self.status_bar.push(self.status_context, f"Converting {source}")
        self.log_buffer.set_text("")
        self.worker = threading.Thread(target=self._convert_in_background, args=(source, options), daemon=True)
        self.worker.start()

    def _convert_in_background(self, source: str, options: dict) -> None:
        try:
            result = self.converter.convert(source, log_callback=self._queue_log, **options)
        except Pkg2NixError as exc:
            GLib.idle_add(self._finish, None, str(exc))
            return
        except Exception as exc:  # pragma: no cover - surfaced in the info bar
            self.logger.exception("Conversion crashed")
            GLib.idle_add(self._finish, None, f"Unexpected error: {exc}")
            return
        GLib.idle_add(self._finish, result, None)

    def _queue_log(self, line: str) -> None:
        GLib.idle_add(self._log, line)

    def _log(self, line: str) -> bool:
        self.log_buffer.insert(self.log_buffer.get_end_iter(), line + "\n")
        return False

    def _finish(self, result: Optional[ConversionResult], error: Optional[str]) -> bool:
        self.status_bar.pop(self.status_context)
        self.convert_button.set_sensitive(True)

        if result is None:
            self._log(f"Error: {error}")
            self._notify(Gtk.MessageType.ERROR, error or "Conversion failed")
            return False

        metadata = result.metadata
        self.summary.set_text(
            f"{metadata.name} {metadata.version} ({metadata.architecture}): "
            f"{len(result.packages)} resolved, {len(result.missing)} missing"
        )
        self.dependency_store.clear()
        for row in dependency_rows(result):
            self.dependency_store.append(list(row))
        self.recipe_buffer.set_text(result.recipe)

        if result.missing:
            self._notify(Gtk.MessageType.WARNING, f"Wrote {result.recipe_path}; some dependencies need manual mapping.")
        else:
            self._notify(Gtk.MessageType.INFO, f"Wrote {result.recipe_path}")
        return False

    def _notify(self, kind: Gtk.MessageType, text: str) -> None:
        self.info_bar.set_message_type(kind)
        self.info_label.set_text(text)
        self.info_label.show()
        self.info_bar.show()


def launch_gui(
    source: Optional[str],
    knowledge: Optional[KnowledgeBase] = None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Open the window and run the GTK main loop until it is closed."""
    window = ConverterWindow(source=source, knowledge=knowledge, logger=logger)
    window.connect("destroy", Gtk.main_quit)
    window.show_all()
    Gtk.main()
    return 0
