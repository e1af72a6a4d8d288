"""
Reading and writing of fragment documents. The submodules are:

- `pfswld.lib.wld.strings`: the obfuscated string hash table
- `pfswld.lib.wld.references`: references between fragments
- `pfswld.lib.wld.fragments`: the fragment types and their codec
- `pfswld.lib.wld.document`: whole documents
"""
from __future__ import annotations

from pfswld.lib.wld.document import FragmentHeader, WldDocument, WldHeader

__all__ = ['FragmentHeader', 'WldDocument', 'WldHeader']
