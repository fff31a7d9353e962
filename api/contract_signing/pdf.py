from io import BytesIO
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from .errors import ValidationError

def count_pages(data: bytes) -> int:
    try:
        reader = PdfReader(BytesIO(data))
        return len(reader.pages)
    except (PdfReadError, ValueError, KeyError) as exc:
        raise ValidationError("File is not a readable PDF", str(exc))
