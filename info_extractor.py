# ========================================================================================
# CONTACT INFORMATION EXTRACTOR
# Pulls email, phone and name out of free text, and spots refusals to share them
# ========================================================================================

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ExtractedEmail:
    value: str
    confidence: float
    validated: bool


@dataclass
class ExtractedPhone:
    value: str
    confidence: float
    validated: bool
    formatted: str


@dataclass
class ExtractedName:
    value: str
    confidence: float


@dataclass
class ExtractedInfo:
    """Structured fields found in a single message"""

    email: Optional[ExtractedEmail] = None
    phone: Optional[ExtractedPhone] = None
    first_name: Optional[ExtractedName] = None
    last_name: Optional[ExtractedName] = None
    full_name: Optional[ExtractedName] = None

    def is_empty(self) -> bool:
        return not any([self.email, self.phone, self.first_name, self.last_name, self.full_name])

    def field_names(self) -> List[str]:
        """Names of the populated fields, in collection order"""
        names = []
        if self.email:
            names.append('email')
        if self.phone:
            names.append('phone')
        if self.first_name:
            names.append('firstName')
        if self.last_name:
            names.append('lastName')
        if self.full_name:
            names.append('fullName')
        return names


# ========================================================================================
# EXTRACTION PATTERNS
# ========================================================================================

EMAIL_PATTERNS = [
    re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b'),
    re.compile(r'\b[A-Za-z0-9._%+-]+\s*@\s*[A-Za-z0-9.-]+\s*\.\s*[A-Z|a-z]{2,}\b'),  # "john @ mail . com"
]

EMAIL_VALIDATION = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

PHONE_PATTERNS = [
    re.compile(r'\(\d{3}\)\s*\d{3}[-.]?\d{4}'),                                   # (954) 682-3329
    re.compile(r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b'),                                 # 954-682-3329, 954.682.3329
    re.compile(r'\b\+?1?[-.\s]?\(?(\d{3})\)?[-.\s]?(\d{3})[-.\s]?(\d{4})\b'),    # +1 954 682 3329
    re.compile(r'\b\d{10}\b'),
]

# The introduction phrase is case-insensitive, the name itself must be capitalised
NAME_PATTERNS = [
    re.compile(r"\b(?i:my name is|i'm|i’m|im|i am|call me|this is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"),
    re.compile(r"\b(?i:name['’]?s|named)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"),
    re.compile(r'^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)(?:\s+(?i:here)|$)'),
    re.compile(r'\b([A-Z][a-z]+\s+[A-Z][a-z]+)\b'),
]

NAME_PREFIXES = {'mr', 'mrs', 'ms', 'dr', 'prof', 'sir', 'madam'}
NAME_SUFFIXES = {'jr', 'sr', 'ii', 'iii', 'iv', 'phd', 'md', 'esq'}
NAME_STOP_WORDS = {
    'the', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by',
    'from', 'up', 'about', 'into', 'through', 'during', 'before', 'after', 'above',
    'below', 'between', 'among', 'is', 'am', 'are', 'was', 'were', 'be', 'been',
    'being', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'must', 'can',
}
# Brand, persona and greeting words that look like names when capitalised
NAME_BLOCKLIST = {
    'gym', 'fitness', 'workout', 'class', 'membership', 'planet', 'carlos', 'agent',
    'hello', 'hi', 'hey', 'thanks',
}

DECLINE_PATTERNS = [
    re.compile(r'no thanks?', re.IGNORECASE),
    re.compile(r'not right now', re.IGNORECASE),
    re.compile(r'maybe later', re.IGNORECASE),
    re.compile(r"don'?t want to", re.IGNORECASE),
    re.compile(r'prefer not to', re.IGNORECASE),
    re.compile(r'rather not', re.IGNORECASE),
    re.compile(r'not comfortable', re.IGNORECASE),
    re.compile(r'privacy', re.IGNORECASE),
    re.compile(r'personal', re.IGNORECASE),
    re.compile(r'skip', re.IGNORECASE),
    re.compile(r'pass', re.IGNORECASE),
]


# ========================================================================================
# EXTRACTOR
# ========================================================================================

class InfoExtractor:
    """Stateless extractor for contact details shared in a chat message"""

    def __init__(self, extra_blocklist: Optional[Iterable[str]] = None):
        self.name_blocklist = NAME_BLOCKLIST | {word.lower() for word in (extra_blocklist or [])}

    def extract_info(self, message: str) -> ExtractedInfo:
        """Extract every field we know how to recognise"""

        extracted = ExtractedInfo()
        if not message:
            return extracted

        extracted.email = self._extract_email(message)
        extracted.phone = self._extract_phone(message)

        names = self._extract_names(message)
        extracted.first_name = names.get('first_name')
        extracted.last_name = names.get('last_name')
        extracted.full_name = names.get('full_name')

        if not extracted.is_empty():
            logger.debug(f"🔎 Extracted fields: {extracted.field_names()}")

        return extracted

    def _extract_email(self, message: str) -> Optional[ExtractedEmail]:
        for pattern in EMAIL_PATTERNS:
            match = pattern.search(message)
            if match:
                email = re.sub(r'\s', '', match.group(0))
                is_valid = self.validate_email(email)
                return ExtractedEmail(
                    value=email.lower(),
                    confidence=0.95 if is_valid else 0.7,
                    validated=is_valid
                )
        return None

    def _extract_phone(self, message: str) -> Optional[ExtractedPhone]:
        for pattern in PHONE_PATTERNS:
            match = pattern.search(message)
            if not match:
                continue

            clean_phone = self._clean_phone_number(match.group(0))
            if self.validate_phone(clean_phone):
                return ExtractedPhone(
                    value=clean_phone,
                    confidence=0.9,
                    validated=True,
                    formatted=self._format_phone_number(clean_phone)
                )
        return None

    def _extract_names(self, message: str) -> Dict[str, ExtractedName]:
        """First pattern producing a usable name wins"""

        for pattern in NAME_PATTERNS:
            match = pattern.search(message)
            if not match or not match.group(1):
                continue

            full_name = match.group(1).strip()
            words = self._name_tokens(full_name)

            if not words:
                continue

            if len(words) == 1:
                return {'first_name': ExtractedName(value=words[0], confidence=0.7)}

            return {
                'first_name': ExtractedName(value=words[0], confidence=0.9),
                'last_name': ExtractedName(value=words[-1], confidence=0.9),
                'full_name': ExtractedName(value=full_name, confidence=0.9),
            }

        return {}

    def _name_tokens(self, phrase: str) -> List[str]:
        tokens = []
        for word in phrase.split():
            lowered = word.lower()
            if len(word) <= 1:
                continue
            if lowered in NAME_STOP_WORDS or lowered in NAME_PREFIXES or lowered in NAME_SUFFIXES:
                continue
            if lowered in self.name_blocklist:
                continue
            tokens.append(word)
        return tokens

    # ====================================================================================
    # VALIDATION AND FORMATTING
    # ====================================================================================

    def validate_email(self, email: str) -> bool:
        return (
            bool(EMAIL_VALIDATION.match(email)) and
            len(email) <= 254 and
            '..' not in email and
            not email.startswith('.') and
            not email.endswith('.')
        )

    def validate_phone(self, phone: str) -> bool:
        """US numbers: 10 digits, area code and exchange code cannot start with 0 or 1"""

        if len(phone) != 10 or not phone.isdigit():
            return False

        if phone[0] in '01':
            return False

        if phone[3] in '01':
            return False

        return True

    def _clean_phone_number(self, phone: str) -> str:
        cleaned = re.sub(r'\D', '', phone)

        # Drop the US country code
        if len(cleaned) == 11 and cleaned.startswith('1'):
            return cleaned[1:]

        return cleaned

    def _format_phone_number(self, phone: str) -> str:
        if len(phone) == 10:
            return f"({phone[:3]}) {phone[3:6]}-{phone[6:]}"
        return phone

    # ====================================================================================
    # DECLINES AND PROVISION
    # ====================================================================================

    def detect_information_decline(self, message: str) -> Dict[str, Any]:
        """Check whether the user is refusing to share information"""

        declined = any(pattern.search(message) for pattern in DECLINE_PATTERNS)
        confidence = 0.8 if declined else 0.0

        decline_type = None
        if declined:
            message_lower = message.lower()
            if 'email' in message_lower:
                decline_type = 'email'
            elif 'phone' in message_lower or 'number' in message_lower:
                decline_type = 'phone'
            elif 'name' in message_lower:
                decline_type = 'name'
            else:
                decline_type = 'general'

        return {
            "declined": declined,
            "type": decline_type,
            "confidence": confidence
        }

    def detect_information_provision(self, message: str, requested_type: str) -> Dict[str, Any]:
        """Check whether the message answers a request for email, phone or name"""

        extracted = self.extract_info(message)

        if requested_type == 'email':
            return {
                "is_providing": extracted.email is not None,
                "confidence": extracted.email.confidence if extracted.email else 0,
                "extracted": extracted.email
            }

        if requested_type == 'phone':
            return {
                "is_providing": extracted.phone is not None,
                "confidence": extracted.phone.confidence if extracted.phone else 0,
                "extracted": extracted.phone
            }

        if requested_type == 'name':
            name_fields = [extracted.first_name, extracted.last_name, extracted.full_name]
            return {
                "is_providing": any(name_fields),
                "confidence": max([field.confidence for field in name_fields if field] or [0]),
                "extracted": {
                    "first_name": extracted.first_name,
                    "last_name": extracted.last_name,
                    "full_name": extracted.full_name
                }
            }

        return {"is_providing": False, "confidence": 0, "extracted": None}


__all__ = [
    'ExtractedEmail',
    'ExtractedPhone',
    'ExtractedName',
    'ExtractedInfo',
    'InfoExtractor',
]
