#!/usr/bin/env python3
# -*- coding: utf8 -*-
# MIT License
#
# Copyright (c) 2024 Ravener
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
import sys
from pathlib import Path

import gi

from card_codec import MemoryCard, SlotType
from card_errors import CardError
from card_formats import EXTENSIONS
from card_icons import ICON_SIZE, animation_interval, icon_to_rgba

gi.require_version("Gtk", "4.0")
gi.require_version("Adw", "1")

from gi.repository import Adw, Gdk, GdkPixbuf, Gio, GLib, GObject, Gtk

MENU_XML = """
<?xml version="1.0" encoding="UTF-8"?>
<interface>
  <menu id="app-menu">
    <section>
      <item>
        <attribute name="action">app.about</attribute>
        <attribute name="label" translatable="yes">_About</attribute>
      </item>
      <item>
        <attribute name="action">app.quit</attribute>
        <attribute name="label" translatable="yes">_Quit</attribute>
        <attribute name="accel">&lt;Primary&gt;Q</attribute>
    </item>
    </section>
  </menu>
</interface>
"""

REGION_FLAGS = {"BI": "🇯🇵 ", "BE": "🇪🇺 ", "BA": "🇺🇸 "}


def get_icon(card, slot):
    palette = card.get_icon_palette(slot)
    textures = []

    for pixels in card.get_icon_frames(slot):
        data = GLib.Bytes.new(bytes(icon_to_rgba(pixels, palette)))
        pixbuf = GdkPixbuf.Pixbuf.new_from_bytes(
            data, GdkPixbuf.Colorspace.RGB, True, 8, ICON_SIZE, ICON_SIZE, ICON_SIZE * 4
        )
        textures.append(Gdk.Texture.new_for_pixbuf(pixbuf))

    return textures


class CardEntry(GObject.GObject):
    def __init__(self, pixbufs, save):
        super().__init__()

        self.pixbufs = pixbufs
        self.icon = Gtk.Image()
        self.save = save
        self.timer_id = None

        if self.pixbufs:
            self.icon.set_from_paintable(self.pixbufs[0])

        if len(self.pixbufs) > 1:
            self.current_index = 0
            # Start the animation loop
            self.timer_id = GLib.timeout_add(
                animation_interval(len(self.pixbufs)), self.update_image
            )

    def update_image(self):
        # Update the image source with the next Pixbuf in the list
        self.icon.set_from_paintable(self.pixbufs[self.current_index])

        # Increment index and wrap around if necessary
        self.current_index = (self.current_index + 1) % len(self.pixbufs)

        # Continue the animation
        return True

    def do_destroy(self, _):
        # Clean up
        if self.timer_id:
            GLib.source_remove(self.timer_id)


def bind_icon(factory, item):
    icon = item.get_item().icon
    item.set_child(icon)


def bind_label(text):
    def bind(factory, item):
        label = Gtk.Label.new(text(item.get_item().save))
        label.set_halign(Gtk.Align.START)
        item.set_child(label)

    return bind


def save_name(save):
    return REGION_FLAGS.get(save.region_raw, "") + save.file_name


def save_title(save):
    title = save.name

    if save.deleted:
        title += " (deleted)"

    return title


class PSXWindow(Adw.ApplicationWindow):
    def __init__(self, application):
        super().__init__(application=application)

        self.set_icon_name("media-memory-sd-symbolic")
        self.set_default_size(800, 500)
        self.set_title("PSX Card Reader")

        self.vbox = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=0)
        self.set_content(self.vbox)
        self.headerbar = Adw.HeaderBar()
        self.titlebar = Adw.WindowTitle(
            title="PSX Card Reader", subtitle="No File Open"
        )
        self.headerbar.set_title_widget(self.titlebar)
        self.vbox.append(self.headerbar)

        # Menu Button
        self.menu_button = Gtk.MenuButton()
        self.menu_button.set_icon_name("open-menu-symbolic")
        menu_model = Gtk.Builder.new_from_string(MENU_XML, -1).get_object("app-menu")
        self.menu_button.set_menu_model(menu_model)
        self.headerbar.pack_end(self.menu_button)

        # Open Button
        button_content = Adw.ButtonContent(
            icon_name="document-open-symbolic", label="Open"
        )
        self.open_button = Gtk.Button(child=button_content)
        self.open_button.add_css_class("raised")
        self.open_button.connect("clicked", self.on_open)
        self.headerbar.pack_start(self.open_button)

        # Placeholder page
        suggest_open_button = Gtk.Button(label="Open")
        suggest_open_button.add_css_class("suggested-action")
        suggest_open_button.add_css_class("pill")
        suggest_open_button.connect("clicked", self.on_open)
        clamp = Adw.Clamp(child=suggest_open_button, maximum_size=30)
        self.status_page = Adw.StatusPage(
            title="Open a File",
            description="No files opened, open a memory card file to get started.",
            icon_name="media-memory-sd-symbolic",
            child=clamp,
        )
        self.status_page.set_vexpand(True)
        # Main content container, this will hold the status at startup and allow us to easily
        # swap it with real content later.
        self.bin = Gtk.ScrolledWindow()
        self.bin.set_child(self.status_page)
        self.vbox.append(self.bin)

    def on_open(self, widget):
        self.file_chooser = Gtk.FileChooserNative.new(
            "Open File",
            self,
            Gtk.FileChooserAction.OPEN,
        )
        file_filter = Gtk.FileFilter.new()
        file_filter.set_name("Memory Card Files")

        for suffix in {"mcd", "mcr", "bin"} | {e[1:] for e in EXTENSIONS.values()}:
            file_filter.add_suffix(suffix)

        self.file_chooser.add_filter(file_filter)
        self.file_chooser.connect("response", self.on_file)
        self.file_chooser.show()

    def display_card(self, card):
        selection = Gtk.SingleSelection()
        store = Gio.ListStore.new(CardEntry)
        selection.set_model(store)

        column_view = Gtk.ColumnView()
        column_view.set_vexpand(True)

        for save in card.get_saves():
            if save.slot_type != SlotType.FORMATTED:
                entry = CardEntry(get_icon(card, save.slot), save)
                column_view.connect("destroy", entry.do_destroy)
                store.append(entry)

        def create_column(name, callback):
            factory = Gtk.SignalListItemFactory()
            factory.connect("bind", callback)

            column = Gtk.ColumnViewColumn.new(name, factory)
            column.set_expand(True)
            column_view.append_column(column)

        create_column("Icon", bind_icon)
        create_column("File Name", bind_label(save_name))
        create_column("Size", bind_label(lambda save: f"{save.size} KB"))
        create_column("Blocks", bind_label(lambda save: str(save.block_count)))
        create_column("Title", bind_label(save_title))
        create_column("Comment", bind_label(lambda save: save.comment))

        column_view.set_model(selection)
        self.bin.set_child(column_view)

    def on_file(self, widget, response):
        if response == Gtk.ResponseType.ACCEPT:
            file = self.file_chooser.get_file()

            # TODO: Find out how to do this via GFile
            data = Path(file.get_path()).read_bytes()

            try:
                card = MemoryCard.from_bytes(data, file.get_basename())
            except CardError as e:
                dialog = Adw.MessageDialog.new(self, "Invalid Memory Card", str(e))
                dialog.add_response("ok", "Okay")
                dialog.show()
            else:
                # Update titlebar to reflect the current open file.
                self.titlebar.set_subtitle(
                    f"{file.get_basename()} ({card.card_type.name})"
                )
                self.display_card(card)


class PSXCardReader(Adw.Application):
    def __init__(self):
        super().__init__(
            application_id="io.github.ravener.psx-card-reader",
            flags=Gio.ApplicationFlags.FLAGS_NONE,
        )

        # Application Actions
        self.create_action("about", self.on_about)
        self.create_action("quit", self.on_quit, ["<primary>q"])

    def do_activate(self) -> None:
        active_window = self.props.active_window
        if active_window:
            active_window.present()
        else:
            self.win = PSXWindow(application=self)
            self.win.present()

    def create_action(self, name, callback, shortcuts=None):
        """Add an application action.

        Args:
            name: the name of the action
            callback: the function to be called when the action is
              activated
            shortcuts: an optional list of accelerators
        """
        action = Gio.SimpleAction.new(name, None)
        action.connect("activate", callback)
        self.add_action(action)
        if shortcuts:
            self.set_accels_for_action(f"app.{name}", shortcuts)

    def on_about(self, widget, _):
        about = Adw.AboutWindow(
            transient_for=self.props.active_window,
            application_name="PSX Card Reader",
            application_icon="media-memory-sd-symbolic",
            developer_name="Ravener",
            version="2.0.0",
            developers=["Ravener"],
            copyright="© 2023 Ravener",
            issue_url="https://github.com/ravener/psx-card-reader/issues",
            website="https://github.com/ravener/psx-card-reader",
        )

        about.present()

    def on_quit(self, widget, _):
        self.quit()


def main():
    app = PSXCardReader()
    app.run(sys.argv)


if __name__ == "__main__":
    main()
