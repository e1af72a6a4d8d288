"""
The command line tools `pfs` and `wld`. The `pfs` tool lists, extracts and creates archives; the
`wld` tool lists the fragments of a document, which can be read from a file or directly from an
archive by specifying `ARCHIVE:NAME`.
"""
from __future__ import annotations

import argparse
import fnmatch
import json
import logging
import os
import sys

from pathlib import Path

import colorama

import pfswld

from pfswld.lib.environment import LogLevel, environment, logger
from pfswld.lib.exceptions import FormatError
from pfswld.lib.pfs import PfsArchive
from pfswld.lib.structures import struct_to_json
from pfswld.lib.tools import date_from_timestamp, get_terminal_size
from pfswld.lib.wld.document import WldDocument
from pfswld.lib.wld.fragments import Fragment, registry

_log = logger(__name__)


def _headline(tool: str, description: str):
    return (
        R'   ____  ______ _____                 __     __' '\n'
        R'  / __ \/ ____// ___/  __      __   / /____/ /' '\n'
        R' / /_/ / /_    \__ \  | | /| / /  / // __  / ' '\n'
        R'/ ____/ __/   ___/ /  | |/ |/ /  / // /_/ /  ' '\n'
        R'/_/   /_/     /____/   |__/|__/  /_/ \__,_/ ({ver})' '\n'
        '\n{tool}: {description}'
    ).format(ver=pfswld.__version__, tool=tool, description=description)


def _formatter(prog: str) -> argparse.HelpFormatter:
    return argparse.RawDescriptionHelpFormatter(prog, width=get_terminal_size(80))


class Painter:
    """
    Applies terminal colors unless they are disabled by `PFSWLD_COLORLESS` or the output is not a
    terminal.
    """
    def __init__(self, stream=None):
        stream = stream or sys.stdout
        self.enabled = not environment.colorless.value and stream.isatty()
        if self.enabled:
            colorama.just_fix_windows_console()

    def __call__(self, text, color: str) -> str:
        if not self.enabled:
            return str(text)
        return F'{color}{text}{colorama.Style.RESET_ALL}'

    def name(self, text):
        return self(text, colorama.Fore.LIGHTYELLOW_EX)

    def number(self, text):
        return self(text, colorama.Fore.LIGHTCYAN_EX)

    def dim(self, text):
        return self(text, colorama.Style.DIM)

    def error(self, text):
        return self(text, colorama.Fore.LIGHTRED_EX)


def _set_verbosity(verbosity: int):
    logging.getLogger(pfswld.__name__).setLevel(LogLevel.FromVerbosity(verbosity))


def _fail(error: BaseException) -> int:
    paint = Painter(sys.stderr)
    print(paint.error(F'error: {error!s}'), file=sys.stderr)
    return 1


def _read_archive(path: str) -> PfsArchive:
    with open(path, 'rb') as stream:
        return PfsArchive.Parse(stream.read())


def pfs_list(archive: PfsArchive, paint: Painter):
    width = max((len(name) for name in archive), default=0)
    for name in archive:
        entry = archive.lookup(name)
        print(F'{paint.name(name.ljust(width))}  {paint.number(F"{entry.uncompressed_size:>10}")}')
    if footer := archive.footer:
        stamp = date_from_timestamp(footer.timestamp)
        print(paint.dim(F'footer {footer.marker.decode("latin1")} {stamp.isoformat(" ")}'))


def pfs_extract(archive: PfsArchive, destination: Path):
    destination.mkdir(parents=True, exist_ok=True)
    for name, data in archive.files():
        if Path(name).name != name or name in ('.', '..'):
            raise FormatError(F'refusing to extract file with a path component: {name}')
        path = destination / name
        path.write_bytes(data)
        _log.info(F'extracted {len(data)} bytes to {path}')


def pfs_create(source: Path, footer: bool = False) -> PfsArchive:
    files = []
    for path in sorted(source.iterdir()):
        if path.is_file():
            files.append((path.name, path.read_bytes()))
    return PfsArchive.build(files, footer=footer or None)


def pfs(argv: list[str] | None = None) -> int:
    """
    Main routine of the `pfs` tool.
    """
    argp = argparse.ArgumentParser(
        prog='pfs',
        formatter_class=_formatter,
        description=_headline('pfs', 'list, extract and create archives'))
    mode = argp.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        '-x', '--extract',
        nargs=2,
        metavar=('SOURCE', 'DESTINATION'),
        help='Extract all files of the archive SOURCE into the directory DESTINATION.'
    )
    mode.add_argument(
        '-c', '--create',
        nargs=2,
        metavar=('SOURCE', 'DESTINATION'),
        help='Create the archive DESTINATION from the regular files in the directory SOURCE.'
    )
    mode.add_argument(
        '-l', '--list',
        metavar='SOURCE',
        help='List the names and sizes of all files in the archive SOURCE.'
    )
    argp.add_argument(
        '-f', '--footer',
        action='store_true',
        help='When creating an archive, append a footer with the current time.'
    )
    argp.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase the verbosity of log output; can be given twice.'
    )
    args = argp.parse_args(argv)
    _set_verbosity(args.verbose)
    paint = Painter()

    try:
        if args.list:
            pfs_list(_read_archive(args.list), paint)
        elif args.extract:
            source, destination = args.extract
            pfs_extract(_read_archive(source), Path(destination))
        else:
            source, destination = args.create
            archive = pfs_create(Path(source), args.footer)
            Path(destination).write_bytes(archive.to_bytes())
    except (FormatError, OSError) as E:
        return _fail(E)
    return 0


def _read_document(source: str, opaque: bool) -> WldDocument:
    if os.path.isfile(source) or ':' not in source:
        with open(source, 'rb') as stream:
            data = stream.read()
    else:
        path, _, name = source.rpartition(':')
        data = _read_archive(path).extract(name)
    return WldDocument.Parse(data, opaque)


def _kind(value: str) -> type[Fragment] | int:
    try:
        return int(value, 0)
    except ValueError:
        pass
    if (cls := registry.by_name(value)) is None:
        names = ', '.join(cls.TYPE_NAME for cls in registry)
        raise argparse.ArgumentTypeError(F'unknown fragment type {value}; pick from: {names}')
    return cls


def wld_list(doc: WldDocument, paint: Painter, kinds: list, pattern: str | None):
    selection = set()
    for kind in kinds:
        selection.update(id(f) for f in doc.fragments_of(kind))
    digits = len(str(len(doc)))
    for index, fragment in enumerate(doc):
        if kinds and id(fragment) not in selection:
            continue
        name = doc.name_of(fragment)
        if pattern and not fnmatch.fnmatch((name or '').lower(), pattern.lower()):
            continue
        print(
            paint.number(F'{index:>{digits}}'),
            paint.dim(F'0x{fragment.type_code:02X}'),
            fragment.type_name.ljust(24),
            paint.name(name) if name else paint.dim('-'),
        )


def wld_strings(doc: WldDocument, paint: Painter):
    for offset, string in doc.strings.items():
        print(paint.number(F'{offset:#010x}'), string)


def wld_json(doc: WldDocument, index: int) -> str:
    if (fragment := doc.at(index)) is None:
        raise FormatError(F'The document has no fragment with index {index}.')
    return json.dumps({
        'index': index,
        'type_code': fragment.type_code,
        'type_name': fragment.type_name,
        'name': doc.name_of(fragment),
        'fields': struct_to_json(fragment),
    }, indent=4)


def wld(argv: list[str] | None = None) -> int:
    """
    Main routine of the `wld` tool.
    """
    argp = argparse.ArgumentParser(
        prog='wld',
        formatter_class=_formatter,
        description=_headline('wld', 'inspect fragment documents'))
    argp.add_argument(
        'source',
        metavar='FILE',
        help='A document file, or ARCHIVE:NAME to read the document NAME from an archive.'
    )
    argp.add_argument(
        '-t', '--type',
        dest='kinds',
        type=_kind,
        action='append',
        default=[],
        help='Only list fragments of this type, given by name or numeric code; can be repeated.'
    )
    argp.add_argument(
        '-n', '--name',
        metavar='PATTERN',
        help='Only list fragments whose name matches this wildcard pattern.'
    )
    argp.add_argument(
        '-s', '--strings',
        action='store_true',
        help='Dump the string table instead of listing fragments.'
    )
    argp.add_argument(
        '-j', '--json',
        metavar='INDEX',
        type=int,
        help='Print the fragment with this zero-based index as JSON.'
    )
    argp.add_argument(
        '-o', '--opaque',
        action='store_true',
        help='Keep fragments that fail to parse as opaque data instead of failing.'
    )
    argp.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase the verbosity of log output; can be given twice.'
    )
    args = argp.parse_args(argv)
    _set_verbosity(args.verbose)
    paint = Painter()

    try:
        doc = _read_document(args.source, args.opaque)
        if args.json is not None:
            print(wld_json(doc, args.json))
        elif args.strings:
            wld_strings(doc, paint)
        else:
            wld_list(doc, paint, args.kinds, args.name)
    except (FormatError, OSError) as E:
        return _fail(E)
    return 0
