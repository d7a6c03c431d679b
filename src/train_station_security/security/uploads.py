"""
File upload validation.

Every check runs on every upload so the caller gets the complete list of
problems in one pass.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from train_station_security.config.settings import SecurityPolicy
from train_station_security.core.exceptions import ValidationError
from train_station_security.core.logging import get_logger, get_security_logger
from train_station_security.security.sanitization import InputSanitizer

logger = get_logger(__name__)
security_logger = get_security_logger(__name__)

# Leading bytes of executable formats
EXECUTABLE_SIGNATURES: Tuple[Tuple[str, bytes], ...] = (
    ("PE/DOS", b"\x4d\x5a"),
    ("ELF", b"\x7f\x45\x4c\x46"),
    ("Java class", b"\xca\xfe\xba\xbe"),
    ("Mach-O 32-bit", b"\xfe\xed\xfa\xce"),
    ("Mach-O 64-bit", b"\xfe\xed\xfa\xcf"),
    ("Mach-O 64-bit (LE)", b"\xcf\xfa\xed\xfe"),
    ("Mach-O 32-bit (LE)", b"\xce\xfa\xed\xfe"),
)
SIGNATURE_SCAN_BYTES = max(len(magic) for _, magic in EXECUTABLE_SIGNATURES)


@dataclass
class FileUploadDescriptor:
    """An upload attempt as received from the client."""

    name: str
    mime_type: str
    size_bytes: int
    content: Optional[bytes] = None


@dataclass
class FileValidationResult:
    """Outcome of validating one upload."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized_name: Optional[str] = None


def detect_executable(content: Optional[bytes]) -> Optional[str]:
    """Return the executable format ``content`` starts with, if any."""
    if not content:
        return None

    head = bytes(content[:SIGNATURE_SCAN_BYTES])
    for label, magic in EXECUTABLE_SIGNATURES:
        if head.startswith(magic):
            return label
    return None


class FileUploadValidator:
    """Validate uploads against size, type, extension and content rules."""

    def __init__(
        self,
        policy: Optional[SecurityPolicy] = None,
        sanitizer: Optional[InputSanitizer] = None,
    ):
        self.policy = policy or SecurityPolicy()
        self.sanitizer = sanitizer or InputSanitizer(self.policy)
        self.allowed_mime_types = frozenset(self.policy.allowed_mime_types)
        self.blocked_extensions = frozenset(self.policy.blocked_extensions)

    def validate(self, descriptor: FileUploadDescriptor) -> FileValidationResult:
        """
        Validate an upload.

        Args:
            descriptor: Name, declared MIME type, size and optional content.

        Returns:
            FileValidationResult: ``valid`` with the sanitized name, or every
            error found.
        """
        errors: List[str] = []

        mime_type = (descriptor.mime_type or "").strip().lower()
        if mime_type not in self.allowed_mime_types:
            errors.append(f"File type {descriptor.mime_type} is not allowed")

        if descriptor.size_bytes < 0 or descriptor.size_bytes > self.policy.max_file_size:
            errors.append(
                f"File size exceeds maximum limit of {self.policy.max_file_size_mb:g}MB"
            )

        sanitized_name: Optional[str] = None
        try:
            sanitized_name = self.sanitizer.sanitize_filename(descriptor.name or "")
        except ValidationError as e:
            errors.append(str(e))

        if sanitized_name is not None:
            extension = os.path.splitext(sanitized_name)[1].lower()
            if extension in self.blocked_extensions:
                errors.append("File extension is not allowed for security reasons")

        executable = detect_executable(descriptor.content)
        if executable:
            logger.debug("Executable signature found", format=executable, filename=descriptor.name)
            errors.append("File contains executable code")

        if errors:
            security_logger.upload_rejected(
                filename=descriptor.name,
                mime_type=descriptor.mime_type,
                errors=errors,
            )
            return FileValidationResult(valid=False, errors=errors)

        return FileValidationResult(valid=True, sanitized_name=sanitized_name)
