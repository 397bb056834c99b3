"""
Parser for Red Hat OVAL definition documents.

Decodes an oval_definitions document into Definition records, each holding
advisory metadata and the boolean criteria tree. The tree is a strictly
owned structure: every CriteriaNode owns its children and criterions, and
the whole tree is discarded once expanded.

Namespaces are ignored when matching element names, so both namespaced
feeds and bare test fixtures decode the same way.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union
from xml.etree import ElementTree as ET

from ..errors import ParseError
from .base_adapter import Severity

logger = logging.getLogger(__name__)

SEVERITY_WORDS = {
    "Low": Severity.LOW,
    "Moderate": Severity.MEDIUM,
    "Important": Severity.HIGH,
    "Critical": Severity.CRITICAL,
}

LINK_SOURCE = "RHSA"


@dataclass
class Criterion:
    """A leaf fact, identified only by its comment text."""
    comment: str


@dataclass
class CriteriaNode:
    """
    A node of the criteria tree.

    A node without children is a leaf group over its criterions. An
    internal node combines its children, and may also hold criterions of
    its own.
    """
    operator: str
    criterions: List[Criterion] = field(default_factory=list)
    children: List["CriteriaNode"] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass
class Reference:
    source: str
    uri: str


@dataclass
class Definition:
    """One advisory definition from an OVAL document."""
    title: str
    description: str
    references: List[Reference]
    criteria: CriteriaNode

    @property
    def name(self) -> str:
        """Advisory name: the title text before the first ': '."""
        idx = self.title.find(": ")
        if idx == -1:
            return self.title.strip()
        return self.title[:idx].strip()

    @property
    def link(self) -> str:
        for reference in self.references:
            if reference.source == LINK_SOURCE:
                return reference.uri
        return ""

    @property
    def severity(self) -> Severity:
        """Severity from the parenthesized word ending the title."""
        idx = self.title.rfind("(")
        word = ""
        if idx != -1:
            word = self.title[idx + 1:].strip().rstrip(")").strip()

        severity = SEVERITY_WORDS.get(word)
        if severity is None:
            logger.warning(f"Could not determine vulnerability severity from: {self.title}")
            return Severity.UNKNOWN
        return severity

    @property
    def clean_description(self) -> str:
        desc = self.description.replace("\n\n\n", " ")
        desc = desc.replace("\n\n", " ")
        return desc.replace("\n", " ")


def parse_definitions(document: Union[bytes, str], document_id: Optional[str] = None) -> List[Definition]:
    """
    Decode an OVAL document into its definitions.

    Args:
        document: Raw XML content
        document_id: Identifier used in error messages (e.g. RHSA number)

    Returns:
        Definitions in document order

    Raises:
        ParseError: If the document is not well-formed XML
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ParseError(f"could not parse OVAL document: {e}", document=document_id) from e

    definitions = []
    for element in root.findall("{*}definitions/{*}definition"):
        definitions.append(_parse_definition(element))

    logger.debug(f"Parsed {len(definitions)} definitions from {document_id or 'document'}")
    return definitions


def _parse_definition(element: ET.Element) -> Definition:
    metadata = element.find("{*}metadata")
    title = ""
    description = ""
    references = []

    if metadata is not None:
        title = _text(metadata.find("{*}title"))
        description = _text(metadata.find("{*}description"))
        for ref in metadata.findall("{*}reference"):
            references.append(Reference(
                source=ref.get("source", ""),
                uri=ref.get("ref_url", "")
            ))

    criteria_element = element.find("{*}criteria")
    if criteria_element is None:
        criteria = CriteriaNode(operator="")
    else:
        criteria = _parse_criteria(criteria_element)

    return Definition(
        title=title,
        description=description,
        references=references,
        criteria=criteria
    )


def _parse_criteria(element: ET.Element) -> CriteriaNode:
    node = CriteriaNode(operator=element.get("operator", ""))
    for child in element:
        if not isinstance(child.tag, str):
            continue
        tag = _local_name(child.tag)
        if tag == "criteria":
            node.children.append(_parse_criteria(child))
        elif tag == "criterion":
            node.criterions.append(Criterion(comment=child.get("comment", "")))
    return node


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text
