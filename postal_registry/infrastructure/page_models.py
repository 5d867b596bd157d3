"""
Pydantic models for the ASP.NET form state scraped from the source page and
for the form submission that triggers the archive download.

These models serve as a strict contract for the hidden fields the source
expects, so that any change to the page's form is caught at the
infrastructure layer before a download is attempted.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..application.domain import SessionContext


class FormState(BaseModel):
    """
    The hidden session fields rendered into the export page.

    ``__VIEWSTATE`` and ``__EVENTVALIDATION`` are mandatory for the server to
    accept a postback; the generator field is sent back only when present.
    """

    model_config = ConfigDict(populate_by_name=True)

    view_state: str = Field(alias="__VIEWSTATE", min_length=1)
    event_validation: str = Field(alias="__EVENTVALIDATION", min_length=1)
    view_state_generator: Optional[str] = Field(
        default=None, alias="__VIEWSTATEGENERATOR"
    )

    def to_session(self) -> SessionContext:
        return SessionContext(
            view_state=self.view_state,
            event_validation=self.event_validation,
            view_state_generator=self.view_state_generator,
        )


class DownloadSelection(BaseModel):
    """The fixed selection the export form is submitted with."""

    state: str = "00"
    file_format: str = "txt"
    button_x: int = 50
    button_y: int = 20


class DownloadForm(BaseModel):
    """The complete postback body for the download image button."""

    model_config = ConfigDict(populate_by_name=True)

    view_state: str = Field(alias="__VIEWSTATE")
    view_state_generator: Optional[str] = Field(
        default=None, alias="__VIEWSTATEGENERATOR"
    )
    event_validation: str = Field(alias="__EVENTVALIDATION")
    state: str = Field(alias="cboEdo")
    file_format: str = Field(alias="rblTipo")
    button_x: int = Field(alias="btnDescarga.x")
    button_y: int = Field(alias="btnDescarga.y")

    @classmethod
    def build(
        cls, session: SessionContext, selection: DownloadSelection
    ) -> "DownloadForm":
        return cls(
            view_state=session.view_state,
            view_state_generator=session.view_state_generator,
            event_validation=session.event_validation,
            state=selection.state,
            file_format=selection.file_format,
            button_x=selection.button_x,
            button_y=selection.button_y,
        )

    def to_form_data(self) -> Dict[str, str]:
        """Returns the url-encodable field mapping, keyed by wire names."""
        fields = self.model_dump(by_alias=True, exclude_none=True)
        return {name: str(value) for name, value in fields.items()}
