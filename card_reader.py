#!/usr/bin/env python3
# -*- coding: utf8 -*-
# MIT License
#
# Copyright (c) 2023-2024 Ravener
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
"""Command line tool to inspect and convert PlayStation memory cards."""
import logging
import math
import sys
from argparse import ArgumentParser
from pathlib import Path

from card_codec import BLOCK_SIZE, HEADER_SIZE, SLOT_COUNT, MemoryCard, SlotType
from card_errors import CardError, InsufficientSpace
from card_formats import EXTENSIONS, CardType
from card_icons import ICON_SIZE
from single_save import SingleSaveType, get_single_save, read_single_save, suggested_file_name

log = logging.getLogger(__name__)

# Other common extensions of raw cards.
RAW_EXTENSIONS = {".mcr", ".mcd", ".mc", ".bin", ".ddf", ".mem", ".psm", ".ps", ".pocket"}

# Characters used to draw icons, darkest first.
SHADES = " .:-=+*#%@"


def card_type_for_path(path: Path, default: CardType = CardType.RAW) -> CardType:
    suffix = path.suffix.lower()

    for card_type, extension in EXTENSIONS.items():
        if suffix == extension:
            return card_type

    if suffix in RAW_EXTENSIONS:
        return CardType.RAW

    return default


def print_card(card: MemoryCard) -> None:
    print("Slot | File Name            | Size   | Blocks    | Title")
    total_size = 0

    for save in card.get_saves():
        if save.slot_type == SlotType.FORMATTED:
            continue

        name = save.file_name.ljust(20)
        size = f"{str(save.size).center(3)} KB"
        blocks = f"{str(save.block_count).center(2)} Block"

        # Make the word plural
        if save.block_count > 1:
            blocks += "s"
        else:
            # Add a space anyway for padding.
            blocks += " "

        title = save.name

        if save.deleted:
            title += " (deleted)"
        if save.comment:
            title += f" [{save.comment}]"

        total_size += save.size
        print(f"{str(save.slot).rjust(4)} | {name} | {size} | {blocks} | {title}")

    free_blocks = card.free_block_count()
    print()
    print(f"• Format: {card.card_type.name}")
    print(f"• Total Size: {total_size} KB")
    print(f"• Free Space: {free_blocks * 8} KB ({free_blocks} Blocks)")
    print()
    print("Filename prefix: BI = Japan, BE = Europe, BA = America")


def print_icon(card: MemoryCard, slot: int) -> None:
    palette = card.get_icon_palette(slot)
    frames = card.get_icon_frames(slot)

    if not frames:
        print(f"Slot {slot} has no icon.")
        return

    for i, pixels in enumerate(frames):
        print(f"Frame {i + 1}/{len(frames)}")

        for y in range(ICON_SIZE):
            row = ""

            for x in range(ICON_SIZE):
                r, g, b, a = palette[pixels[y * ICON_SIZE + x]]
                # Luma, scaled to the shades above.
                level = (r * 299 + g * 587 + b * 114) // 1000 if a else 0
                row += SHADES[level * (len(SHADES) - 1) // 255] * 2

            print(row)

        print()


def save_card(card: MemoryCard, args) -> None:
    output = Path(args.output or args.input)
    card_type = card_type_for_path(output, card.card_type)

    if not card.save_memory_card(str(output), card_type):
        raise CardError(f"Could not write {output}")

    log.info("Saved %s as %s", output, card_type.name)


def check_slot(slot: int) -> int:
    slot = int(slot)

    if not 0 <= slot < SLOT_COUNT:
        raise ValueError(f"slot must be between 0 and {SLOT_COUNT - 1}")

    return slot


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(description="PlayStation memory card tool.")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Show more log messages."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    command = commands.add_parser("list", help="List the saves on a card.")
    command.add_argument("input", help="The memory card file.")

    command = commands.add_parser("convert", help="Convert a card to another format.")
    command.add_argument("input", help="The memory card file.")
    command.add_argument("output", help="The new file, its extension selects the format.")

    command = commands.add_parser("export", help="Export a single save.")
    command.add_argument("input", help="The memory card file.")
    command.add_argument("slot", type=check_slot)
    command.add_argument(
        "--format",
        choices=[t.value for t in SingleSaveType],
        default=SingleSaveType.MCS.value,
    )
    command.add_argument("-o", "--output", help="Output file name.")

    command = commands.add_parser("import", help="Import a single save.")
    command.add_argument("input", help="The memory card file.")
    command.add_argument("save", help="The save file (raw, mcs, psv or ar).")
    command.add_argument("--slot", type=check_slot, default=0, help="First slot to try.")
    command.add_argument("-o", "--output", help="Write the card here instead.")

    for name, text in (("delete", "Delete or restore a save."), ("format", "Erase a save.")):
        command = commands.add_parser(name, help=text)
        command.add_argument("input", help="The memory card file.")
        command.add_argument("slot", type=check_slot)
        command.add_argument("-o", "--output", help="Write the card here instead.")

    command = commands.add_parser("create", help="Create an empty card.")
    command.add_argument("output", help="The new file, its extension selects the format.")

    command = commands.add_parser("icons", help="Draw the icon of a save.")
    command.add_argument("input", help="The memory card file.")
    command.add_argument("slot", type=check_slot)

    return parser


def run(args) -> None:
    if args.command == "create":
        card = MemoryCard()
        card.format_card()
        args.input = args.output
        save_card(card, args)
        return

    card = MemoryCard.from_file(args.input)

    if args.command == "list":
        print_card(card)
    elif args.command == "convert":
        save_card(card, args)
    elif args.command == "icons":
        print_icon(card, card.find_parent_slot(args.slot))
    elif args.command == "export":
        save_type = SingleSaveType(args.format)
        output = Path(args.output or suggested_file_name(card, args.slot, save_type))
        output.write_bytes(get_single_save(card, args.slot, save_type))
        print(f"Exported slot {args.slot} to {output}")
    elif args.command == "import":
        save = read_single_save(Path(args.save).read_bytes())

        if not card.set_save_bytes(args.slot, save):
            required = math.ceil((len(save) - HEADER_SIZE) / BLOCK_SIZE)
            available = len(card.find_free_slots(args.slot, SLOT_COUNT))
            raise InsufficientSpace(args.slot, required, available)

        save_card(card, args)
    elif args.command == "delete":
        card.toggle_delete_save(args.slot)
        save_card(card, args)
    elif args.command == "format":
        card.format_save(args.slot)
        save_card(card, args)


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(args.verbose, 2)]
    logging.basicConfig(level=level, format="%(levelname)s: %(name)s: %(message)s")

    try:
        run(args)
    except (CardError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
