import logging
import mimetypes
from pathlib import Path
from typing import Optional, Protocol


class Classifier(Protocol):
    def detect(self, path: Path) -> Optional[str]:
        ...


class MimeClassifier:
    """
    Content-type labels from the file name.

    Unknown extensions are not an error; they simply have no label.
    """

    def __init__(self):
        # Built-in table only, so labels do not depend on the host's mime.types
        self._types = mimetypes.MimeTypes()

    def detect(self, path: Path) -> Optional[str]:
        mime_type, _ = self._types.guess_type(Path(path).name, strict=False)
        if mime_type is None:
            logging.debug(f"No content type for {path}")
        return mime_type


class NullClassifier:
    """Never assigns a label. Used when content types are not wanted."""

    def detect(self, path: Path) -> Optional[str]:
        return None
