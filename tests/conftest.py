import json, sys, pytest
from pathlib import Path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path: sys.path.insert(0, str(ROOT))


@pytest.fixture
def make_kernel(tmp_path):
    "Write `<root>/<name>/kernel.json` (raw text when `raw` is given) and return the kernel dir."
    def _make(root:str, name:str, argv=None, language="python", display_name=None, raw:str|None=None, logo:bytes|None=None):
        d = tmp_path / root / name
        d.mkdir(parents=True)
        spec = dict(argv=argv or ["python", "-m", "ipykernel_launcher", "-f", "{connection_file}"], language=language,
            display_name=display_name or name)
        (d / "kernel.json").write_text(raw if raw is not None else json.dumps(spec), encoding="utf-8")
        if logo is not None: (d / "logo-64x64.png").write_bytes(logo)
        return d
    return _make
