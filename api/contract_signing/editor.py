"""Interactive field placement state.

``FieldEditor`` holds the fields of the document being edited while the user
places them with the pointer. All coordinates it stores are page-intrinsic
(PDF points on the reference page); screen coordinates handed to it are
divided by the current zoom scale first.
"""
import secrets
from dataclasses import dataclass, field as dc_field
from typing import Callable, Dict, List, Optional

from .geometry import PAGE_HEIGHT, PAGE_WIDTH

DEFAULT_SIZES = {
    "signature": (200, 60),
    "initials": (80, 40),
    "date": (120, 30),
    "text": (200, 30),
    "name": (200, 30),
    "input": (200, 30),
    "checkbox": (24, 24),
}

MIN_SCALE = 0.5
MAX_SCALE = 2.0
SCALE_STEP = 0.25


@dataclass
class PlacedField:
    id: str
    signer_id: str
    field_type: str
    x: float
    y: float
    page: int
    width: float
    height: float
    required: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "signerId": self.signer_id,
            "fieldType": self.field_type,
            "position": {"x": self.x, "y": self.y, "page": self.page},
            "size": {"width": self.width, "height": self.height},
            "required": self.required,
        }


def new_field_id() -> str:
    return f"field_{secrets.token_urlsafe(9)}"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


@dataclass
class FieldEditor:
    num_pages: int = 1
    page_width: float = PAGE_WIDTH
    page_height: float = PAGE_HEIGHT
    on_change: Optional[Callable[[List[PlacedField]], None]] = None
    fields: Dict[str, PlacedField] = dc_field(default_factory=dict)
    current_page: int = 1
    scale: float = 1.0
    selected_field: Optional[str] = None
    selected_signer: Optional[str] = None
    selected_field_type: str = "signature"
    dragging: Optional[str] = None
    drag_offset: tuple = (0.0, 0.0)

    @classmethod
    def load(cls, fields: List[PlacedField], signer_ids: List[str], **kwargs) -> "FieldEditor":
        editor = cls(**kwargs)
        editor.fields = {f.id: f for f in fields}
        editor.selected_signer = signer_ids[0] if signer_ids else None
        return editor

    # selection and view

    def select_signer(self, signer_id: Optional[str]):
        self.selected_signer = signer_id

    def select_field_type(self, field_type: str):
        if field_type not in DEFAULT_SIZES:
            raise ValueError(f"unknown field type: {field_type}")
        self.selected_field_type = field_type

    def go_to_page(self, page: int):
        self.current_page = int(_clamp(page, 1, max(1, self.num_pages)))

    def next_page(self):
        self.go_to_page(self.current_page + 1)

    def previous_page(self):
        self.go_to_page(self.current_page - 1)

    def zoom_in(self):
        self.scale = min(MAX_SCALE, self.scale + SCALE_STEP)

    def zoom_out(self):
        self.scale = max(MIN_SCALE, self.scale - SCALE_STEP)

    def set_page_size(self, width: float, height: float):
        self.page_width = width
        self.page_height = height

    def visible_fields(self) -> List[PlacedField]:
        return [f for f in self.fields.values() if f.page == self.current_page]

    # gestures

    def click(self, screen_x: float, screen_y: float) -> Optional[PlacedField]:
        """Drop a field of the selected type centred on the clicked point."""
        if not self.selected_signer or self.dragging:
            return None
        width, height = DEFAULT_SIZES[self.selected_field_type]
        x = screen_x / self.scale - width / 2
        y = screen_y / self.scale - height / 2
        placed = PlacedField(
            id=new_field_id(),
            signer_id=self.selected_signer,
            field_type=self.selected_field_type,
            x=_clamp(x, 0, max(0, self.page_width - width)),
            y=_clamp(y, 0, max(0, self.page_height - height)),
            page=self.current_page,
            width=width,
            height=height,
        )
        self.fields[placed.id] = placed
        self.selected_field = placed.id
        self._changed()
        return placed

    def begin_drag(self, field_id: str, offset_x: float, offset_y: float):
        # only fields on the current page are interactive
        if field_id not in self.fields or self.fields[field_id].page != self.current_page:
            return
        self.drag_offset = (offset_x, offset_y)
        self.selected_field = field_id
        self.dragging = field_id

    def drag_to(self, pointer_x: float, pointer_y: float):
        if not self.dragging:
            return
        placed = self.fields[self.dragging]
        x = (pointer_x - self.drag_offset[0]) / self.scale
        y = (pointer_y - self.drag_offset[1]) / self.scale
        placed.x = _clamp(x, 0, max(0, self.page_width - placed.width))
        placed.y = _clamp(y, 0, max(0, self.page_height - placed.height))
        self._changed()

    def end_drag(self):
        self.dragging = None

    def delete(self, field_id: str):
        if self.fields.pop(field_id, None) is None:
            return
        if self.selected_field == field_id:
            self.selected_field = None
        if self.dragging == field_id:
            self.dragging = None
        self._changed()

    def _changed(self):
        if self.on_change:
            self.on_change(list(self.fields.values()))


def to_create_payload(placed: PlacedField, document_id: str) -> dict:
    """Body for ``POST /api/contracts/{id}/fields``."""
    return {
        "documentId": str(document_id),
        "signerId": placed.signer_id,
        "fieldType": placed.field_type,
        "pages": str(placed.page),
        "position": {"x": placed.x, "y": placed.y},
        "size": {"width": placed.width, "height": placed.height},
    }
