"""Retention tags and the TagSet wire document."""

import json
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Tuple


@dataclass(frozen=True)
class Tag:
    """A single object tag."""
    key: str
    value: str = "1"

    def to_document(self) -> Dict[str, str]:
        return {"Key": self.key, "Value": self.value}


STANDARD_TAG = Tag("standard", "1")


class TagSet:
    """Ordered, immutable sequence of tags applied to one backup object.

    Serializes to the document accepted by ``put-object-tagging``::

        {"TagSet": [{"Key": "standard", "Value": "1"}, ...]}
    """

    def __init__(self, tags: Iterable[Tag] = ()):
        self._tags: Tuple[Tag, ...] = tuple(tags)

    @classmethod
    def standard(cls) -> 'TagSet':
        """Tag set holding only the baseline tag every backup carries."""
        return cls([STANDARD_TAG])

    def with_tag(self, tag: Tag) -> 'TagSet':
        return TagSet(self._tags + (tag,))

    @property
    def keys(self) -> List[str]:
        return [tag.key for tag in self._tags]

    def __iter__(self) -> Iterator[Tag]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __contains__(self, key) -> bool:
        if isinstance(key, Tag):
            return key in self._tags
        return key in self.keys

    def __eq__(self, other) -> bool:
        if not isinstance(other, TagSet):
            return NotImplemented
        return self._tags == other._tags

    def __hash__(self) -> int:
        return hash(self._tags)

    def __repr__(self) -> str:
        return f"<TagSet({', '.join(self.keys)})>"

    def to_document(self) -> Dict[str, List[Dict[str, str]]]:
        return {"TagSet": [tag.to_document() for tag in self._tags]}

    def to_json(self) -> str:
        """Compact JSON form, suitable as a command-line argument."""
        return json.dumps(self.to_document(), separators=(",", ":"))

    @classmethod
    def from_document(cls, document) -> 'TagSet':
        """Build a TagSet from a parsed wire document.

        Raises:
            ValueError: If the document is not shaped like {"TagSet": [...]}
        """
        if not isinstance(document, dict) or not isinstance(document.get("TagSet"), list):
            raise ValueError("Tag document must be an object with a 'TagSet' list")

        tags = []
        for entry in document["TagSet"]:
            if not isinstance(entry, dict):
                raise ValueError(f"Tag entry must be an object, got {entry!r}")
            key, value = entry.get("Key"), entry.get("Value")
            if not isinstance(key, str) or not isinstance(value, str):
                raise ValueError(f"Tag entry needs string Key and Value, got {entry!r}")
            tags.append(Tag(key, value))
        return cls(tags)

    @classmethod
    def from_json(cls, text: str) -> 'TagSet':
        return cls.from_document(json.loads(text))
