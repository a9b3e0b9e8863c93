from pathlib import Path

# Font candidates for unicode labels (macOS/Windows/Linux). Names entered by
# users may contain CJK characters, so CJK-capable fonts come first.
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/AppleGothic.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    # Linux
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]

# Where the gallery lives unless --storage is given.
DEFAULT_STORAGE_PATH = Path.home() / ".facelens" / "storage.json"

# Storage key of the gallery entry; the id counter lives under "<key>.nextId".
GALLERY_KEY = "trainedFaces"

DEFAULT_SUBMIT_URL = "http://localhost:3000/train/face"

UNKNOWN_LABEL = "Unknown"

# Overlay colors (BGR).
FACE_COLOR = (76, 76, 255)
OBJECT_COLOR = (232, 19, 117)
