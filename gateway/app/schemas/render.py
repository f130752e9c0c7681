import re
from pathlib import PurePath
from typing import Any, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictStr

# Extensions outside this alphabet are not kept on the spooled upload,
# so they cannot name the template's format either.
_USABLE_EXTENSION = re.compile(r"[A-Za-z0-9]{1,16}")

# Format assumed for templates without a usable extension.
DEFAULT_TEMPLATE_FORMAT = "txt"


def split_template_name(filename: Optional[str]) -> Tuple[str, str]:
    """
    Split an uploaded filename into ``(stem, format)``.

    ``format`` is the lowercase extension, or ``""`` when the name has no
    usable extension; the stem is then the whole name.
    """
    name = PurePath(filename or "").name
    stem, _, extension = name.rpartition(".")
    if not stem or not _USABLE_EXTENSION.fullmatch(extension):
        return name, ""
    return stem, extension.lower()


class RenderOptions(BaseModel):
    """
    Per-request rendering options.

    ``convertTo`` and ``outputName`` are defaulted from the uploaded
    template's filename by ``resolve()``. Unrecognized keys are kept and
    exposed to templates as ``options``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    convert_to: Optional[StrictStr] = Field(
        default=None,
        alias="convertTo",
        description="Target format (file extension). Defaults to the template's own.",
    )

    output_name: Optional[StrictStr] = Field(
        default=None,
        alias="outputName",
        description="File name of the rendered document.",
    )

    # ------------------------------------------------------------------
    # Engine pass-through
    # ------------------------------------------------------------------
    lang: Optional[StrictStr] = None
    timezone: Optional[StrictStr] = None
    complement: Any = Field(
        default=None,
        description="Extra data exposed to templates as ``c``.",
    )

    def resolve(self, original_filename: str) -> "RenderOptions":
        """Fill ``convertTo`` and ``outputName`` from the template filename."""
        stem, extension = split_template_name(original_filename)

        convert_to = (
            (self.convert_to or "").lstrip(".")
            or extension
            or DEFAULT_TEMPLATE_FORMAT
        )
        output_name = self.output_name or f"{stem or 'report'}.{convert_to}"

        return self.model_copy(
            update={"convert_to": convert_to, "output_name": output_name}
        )


class EmailDirective(BaseModel):
    """Optional request to email the rendered document."""

    to: List[StrictStr]
    subject: StrictStr = Field(..., min_length=1)
    body: StrictStr = Field(
        ...,
        validation_alias=AliasChoices("body", "text"),
    )
