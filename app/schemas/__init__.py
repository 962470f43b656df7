import importlib
from pathlib import Path

# 현재 디렉토리의 모든 .py 파일 조회
current_dir = Path(__file__).parent
py_files = [
    f.stem for f in current_dir.glob("*.py")
    if f.is_file() and f.stem != "__init__"
]

# 동적으로 모든 모듈 import하고 public 클래스들 가져오기
for module_name in py_files:
    module = importlib.import_module(f".{module_name}", package="app.schemas")
    for attr in getattr(module, "__all__", [a for a in dir(module) if not a.startswith("_")]):
        globals()[attr] = getattr(module, attr)
