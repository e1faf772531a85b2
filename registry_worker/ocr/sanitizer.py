"""Turn corrected registry OCR text into structured page results.

Pure functions only: no I/O and no provider calls.
"""

import re

from registry_worker.exceptions import SanitizationError
from registry_worker.ocr.models import Inscription, PageMetadata, PageResult, Party, PipelineDocument

_UPPER = "A-ZÀÂÄÇÉÈÊËÏÎÔÙÛÜ"
_APOS = "['’]"

_PAGE_DELIMITER_RE = re.compile(r"---\s*Page\s+(\d+)\s*---", re.IGNORECASE)
_LIGNE_RE = re.compile(r"Ligne\s+(\d+)\s*:", re.IGNORECASE)
_ORDINAL_ROLE_RE = re.compile(r"\d+\s*(?:ere|ère|re|ieme|ième|eme|ème)\s+partie", re.IGNORECASE)
# "LASTNAME, Firstname" runs; a run ends where the next upper-case surname starts.
_NAME_RE = re.compile(
    rf"([{_UPPER}][{_UPPER}'’\s-]+,\s*[^,]+?)(?=\s+[{_UPPER}](?:{_APOS}?[{_UPPER}])+|$)"
)

_METADATA_LABELS = {
    "circonscription": r"Circonscription\s+fonci[eè]re",
    "cadastre": r"Cadastre",
    "lot_number": r"Lot",
}

_INSCRIPTION_LABELS = {
    "acte_publication_date": rf"Date\s+de\s+pr[ée]sentation\s+d{_APOS}inscription",
    "acte_publication_number": r"Num[ée]ro",
    "acte_nature": rf"Nature\s+de\s+l{_APOS}acte",
    "qualite": r"Qualit[ée]",
    "parties": r"Nom\s+des\s+parties",
    "remarques": r"Remarques",
    "radiation_number": r"Radiations?",
}

# Free text runs to the end of its line; labels inside it are part of the value.
_FREE_TEXT_FIELDS = {"remarques"}

# Every label ends the value of the label before it on the same line.
_FIELD_RE = re.compile(
    "(?<!\\w)(?:"
    + "|".join(
        rf"(?P<{key}>{label})"
        for key, label in [
            *_INSCRIPTION_LABELS.items(),
            ("avis_adresse", rf"Avis\s+d{_APOS}adresse"),
            *_METADATA_LABELS.items(),
        ]
    )
    + r")\s*:",
    re.IGNORECASE,
)
_OPTION_RE = re.compile(r"\s*Option\s+1\s*:\s*(.+?)\s*\(Confiance", re.IGNORECASE | re.DOTALL)

_ELLIPSIS_RE = re.compile(r"^(?:\.{3}|…)\s*|\s*(?:\.{3}|…)$")

_EMPTY_MARKERS = {"", "[vide]", "vide", "(vide)", "-", "n/a"}

# Role words that may be listed together for several parties ("Créancier Débiteur").
KNOWN_ROLE_WORDS = {
    "acheteur", "acquéreur", "bénéficiaire", "cédant", "cessionnaire", "constituant",
    "créancier", "débiteur", "décédé", "donataire", "donateur", "emprunteur",
    "héritier", "légataire", "locataire", "locateur", "mandant", "mandataire",
    "prêteur", "propriétaire", "requérant", "vendeur",
}


def normalize_value(value: str | None) -> str | None:
    """Collapse whitespace and map every "empty" marker to None."""
    if value is None:
        return None
    value = re.sub(r"\s+", " ", value).strip().strip("*").strip()
    value = _ELLIPSIS_RE.sub("", value)
    if value.lower() in _EMPTY_MARKERS:
        return None
    return value


def split_pages(text: str) -> list[tuple[int, str]]:
    """Split combined text on ``--- Page N ---`` delimiters.

    Text with no delimiter is a single page numbered 1. Text before the
    first delimiter is discarded when blank and prepended to the first page
    otherwise.
    """
    matches = list(_PAGE_DELIMITER_RE.finditer(text))
    if not matches:
        return [(1, text.strip())]
    pages = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        pages.append((int(match.group(1)), text[match.end():end].strip()))
    preamble = text[: matches[0].start()].strip()
    if preamble:
        number, body = pages[0]
        pages[0] = (number, f"{preamble}\n{body}")
    return pages


def parse_fields(text: str) -> dict[str, str | None]:
    """Read ``Label: value`` pairs from a block, first occurrence winning.

    A value ends at the end of its line or at the next label on the same
    line. ``Remarques`` always keeps the rest of its line. The
    ``Option 1: VALUE (Confiance: NN%)`` form yields option 1.
    """
    values: dict[str, str | None] = {}
    consumed = 0
    for match in _FIELD_RE.finditer(text):
        if match.start() < consumed:
            continue
        key = match.lastgroup
        line_end = text.find("\n", match.end())
        if line_end == -1:
            line_end = len(text)

        option = _OPTION_RE.match(text, match.end())
        if option:
            raw, consumed = option.group(1), option.end()
        else:
            consumed = line_end
            if key not in _FREE_TEXT_FIELDS:
                following = _FIELD_RE.search(text, match.end(), line_end)
                if following:
                    consumed = following.start()
            raw = text[match.end():consumed]
        values.setdefault(key, normalize_value(raw))
    return values


def extract_metadata(header: str) -> PageMetadata:
    values = parse_fields(header)
    return PageMetadata(**{key: values.get(key) for key in _METADATA_LABELS})


def split_names(text: str) -> list[str]:
    """Split ``LASTNAME, Firstname`` runs; text that does not split cleanly is one name."""
    names = [match.group(1).strip() for match in _NAME_RE.finditer(text)]
    if not names or " ".join(names) != " ".join(text.split()):
        return [text.strip()]
    return names


def _compound_roles(qualite: str) -> list[str]:
    words = qualite.split()
    if len(words) >= 2 and all(word.lower() in KNOWN_ROLE_WORDS for word in words):
        return words
    return []


def parse_parties(
    names_text: str | None,
    qualite: str | None,
    diagnostics: list[str] | None = None,
) -> list[Party]:
    """Pair party names with their roles.

    Ordinal roles ("1ere partie 2ième partie") and compound roles
    ("Créancier Débiteur") split the names only when there is exactly one
    name per role. Otherwise one party keeps the whole text and a note is
    appended to ``diagnostics``.
    """
    if names_text is None:
        return []
    if qualite is None:
        return [Party(name=names_text, role=None)]

    roles = [role.strip() for role in _ORDINAL_ROLE_RE.findall(qualite)]
    if len(roles) < 2:
        roles = _compound_roles(qualite)
    if len(roles) < 2:
        return [Party(name=names_text, role=qualite)]

    names = split_names(names_text)
    if len(names) != len(roles):
        if diagnostics is not None:
            diagnostics.append(
                f"Parties kept whole: {len(names)} name(s) for {len(roles)} role(s) "
                f"in {names_text!r} / {qualite!r}"
            )
        return [Party(name=names_text, role=qualite)]
    return [Party(name=name, role=role) for name, role in zip(names, roles)]


def parse_inscription(block: str, diagnostics: list[str] | None = None) -> Inscription | None:
    """Parse one ``Ligne N:`` block; None when no known label is present."""
    values = parse_fields(block)
    if not any(key in values for key in _INSCRIPTION_LABELS):
        return None
    return Inscription(
        acte_publication_date=values.get("acte_publication_date"),
        acte_publication_number=values.get("acte_publication_number"),
        acte_nature=values.get("acte_nature"),
        parties=parse_parties(values.get("parties"), values.get("qualite"), diagnostics),
        remarques=values.get("remarques"),
        radiation_number=values.get("radiation_number"),
    )


def parse_page(page_number: int, text: str) -> PageResult:
    text = text.replace("**", "")
    lignes = list(_LIGNE_RE.finditer(text))
    header = text[: lignes[0].start()] if lignes else text
    page = PageResult(page_number=page_number, metadata=extract_metadata(header))

    for index, match in enumerate(lignes):
        end = lignes[index + 1].start() if index + 1 < len(lignes) else len(text)
        notes: list[str] = []
        inscription = parse_inscription(text[match.end():end], notes)
        if inscription is None:
            page.diagnostics.append(text[match.start():end].strip())
        else:
            page.inscriptions.append(inscription)
            page.diagnostics.extend(f"Ligne {match.group(1)}: {note}" for note in notes)
    return page


def sanitize(corrected_text: str) -> PipelineDocument:
    """Parse corrected OCR text into a ``PipelineDocument``.

    Raises:
        SanitizationError: if the text is blank or nothing in it can be
            parsed (no page metadata and no inscription anywhere).
    """
    if not corrected_text or not corrected_text.strip():
        raise SanitizationError("Corrected text is empty")

    pages = [parse_page(number, body) for number, body in split_pages(corrected_text)]
    if all(page.metadata.is_empty() and not page.inscriptions for page in pages):
        raise SanitizationError(
            f"No metadata or inscription could be parsed from {len(pages)} page(s)"
        )
    return PipelineDocument(pages=pages, corrected_text=corrected_text)
