from __future__ import annotations

from pathlib import Path
import sys


def _put_src_first_on_syspath() -> None:
    src = Path(__file__).resolve().parents[1] / 'src'
    if not src.is_dir():
        return
    wanted = str(src)
    key = wanted.replace('\\', '/').lower()
    rest = [item for item in sys.path if str(item or '').replace('\\', '/').lower() != key]
    sys.path[:] = [wanted, *rest]


_put_src_first_on_syspath()
