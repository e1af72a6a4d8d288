R"""
    ----------------------------------------------------------
       ____  ______ _____                 __     __
      / __ \/ ____// ___/  __      __   / /____/ /
     / /_/ / /_    \__ \  | | /| / /  / // __  /
    / ____/ __/   ___/ /  | |/ |/ /  / // /_/ /
   /_/   /_/     /____/   |__/|__/  /_/ \__,_/

This is the pfswld package documentation. The package reads and writes two binary formats that
belong together: the PFS archive container (historically `.s3d` and `.pfs` files) and the WLD
fragment document which is usually stored inside such an archive.

1. `pfswld.lib.pfs`: the archive container with its compressed blocks, index, directory and footer.
2. `pfswld.lib.wld`: the fragment document with its obfuscated string table and typed references.
3. `pfswld.cli`: the `pfs` and `wld` command line tools.

Every structure that can be parsed can also be serialized, and the serialization of a parsed
structure reproduces the input byte for byte.
"""
from __future__ import annotations

__version__ = '0.3.1'
__distribution__ = 'pfswld'
