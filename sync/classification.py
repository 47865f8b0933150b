# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Classification - table-driven campus, ministry and role mapping for Planning Center names
"""
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

# Extra substrings that identify a campus besides its own name
CAMPUS_ALIASES = {
    'cannon county': ('cannon',),
    'murfreesboro north': ('boro north',),
}

# Collections that belong to the whole network rather than a campus
NETWORK_WIDE_PATTERNS = ('worship night', 'all team', 'prayer night')

# Student ministries: EON, Encounter, Evident (ER)
STUDENT_PATTERNS = (
    re.compile(r'\beon\b'),
    re.compile(r'\bencounter\b'),
    re.compile(r'\bevident\b'),
    re.compile(r'\ber\b'),
)

# Abbreviations inside student ministry names, mapped to a campus name fragment
STUDENT_CAMPUS_ABBREVIATIONS = (
    (('(cc)', ' cc)'), 'cannon'),
    (('(boro)', ' boro)', 'eon boro'), 'central'),
)
STUDENT_DEFAULT_CAMPUS = 'central'

EXCLUDED_COLLECTION_PATTERNS = ('practice song',)
ALLOWED_COLLECTION_PATTERNS = (
    re.compile(r'worship night'),
    re.compile(r'encounter'),
    re.compile(r'\beon\b'),
    re.compile(r'\bevident\b'),
    re.compile(r'\ber\b'),
)

ROLE_POSITIONS = {
    'vocals': 'lead_vocals',
    'vocal': 'lead_vocals',
    'singer': 'lead_vocals',
    'lead vocals': 'lead_vocals',
    'lead vocal': 'lead_vocals',
    'lead singer': 'lead_vocals',
    'worship leader': 'lead_vocals',
    'lead worshiper': 'lead_vocals',
    'harmony': 'harmony_vocals',
    'harmony vocals': 'harmony_vocals',
    'background vocals': 'background_vocals',
    'bgv': 'background_vocals',
    'acoustic guitar': 'acoustic_guitar',
    'acoustic': 'acoustic_guitar',
    'electric guitar': 'electric_guitar',
    'electric': 'electric_guitar',
    'lead guitar': 'electric_guitar',
    'bass': 'bass',
    'bass guitar': 'bass',
    'drums': 'drums',
    'drummer': 'drums',
    'keys': 'keys',
    'keyboard': 'keys',
    'keyboards': 'keys',
    'piano': 'piano',
    'pianist': 'piano',
    'violin': 'violin',
    'cello': 'cello',
    'saxophone': 'saxophone',
    'sax': 'saxophone',
    'trumpet': 'trumpet',
    'sound': 'sound_tech',
    'audio': 'sound_tech',
    'sound tech': 'sound_tech',
    'audio tech': 'sound_tech',
    'foh': 'sound_tech',
    'lights': 'lighting',
    'lighting': 'lighting',
    'light tech': 'lighting',
    'visuals': 'media',
    'media': 'media',
    'lyrics': 'media',
    'propresenter': 'media',
    'broadcast': 'broadcast',
    'streaming': 'broadcast',
    'camera': 'broadcast',
    'tech': 'sound_tech',
    'production': 'sound_tech',
    'band': 'other_instrument',
    'audio/visual': 'sound_tech',
}

AUDIO_POSITIONS = {
    'foh': ('sound_tech', 'foh'),
    'front of house': ('sound_tech', 'foh'),
    'sound': ('sound_tech', 'foh'),
    'audio': ('sound_tech', 'foh'),
    'audio shadow': ('audio_shadow', 'audio_shadow'),
    'shadow': ('audio_shadow', 'audio_shadow'),
    'lights': ('lighting', 'lighting'),
    'lighting': ('lighting', 'lighting'),
    'propresenter': ('media', 'propresenter'),
    'lyrics': ('media', 'propresenter'),
    'media': ('media', 'propresenter'),
}

VIDEO_POSITIONS = {
    'camera 1': ('camera_1', 'camera_1'),
    'camera 2': ('camera_2', 'camera_2'),
    'camera 3': ('camera_3', 'camera_3'),
    'camera 4': ('camera_4', 'camera_4'),
    'camera': ('camera_1', 'camera_1'),
    'cam 1': ('camera_1', 'camera_1'),
    'cam 2': ('camera_2', 'camera_2'),
    'cam 3': ('camera_3', 'camera_3'),
    'cam 4': ('camera_4', 'camera_4'),
    'director': ('director', 'director'),
    'td': ('director', 'director'),
    'technical director': ('director', 'director'),
    'producer': ('producer', 'producer'),
    'switcher': ('switcher', 'switcher'),
    'graphics': ('graphics', 'graphics'),
    'gfx': ('graphics', 'graphics'),
    'chat': ('chat_host', 'chat_host'),
    'chat host': ('chat_host', 'chat_host'),
    'host': ('chat_host', 'chat_host'),
    'livestream': ('producer', 'producer'),
    'streaming': ('producer', 'producer'),
}

AUDIO_TEAM_PATTERNS = ('audio', 'production', 'tech', 'sound', 'foh', 'a/v', 'av ')
VIDEO_TEAM_PATTERNS = ('livestream', 'broadcast', 'video', 'stream', 'camera')

# Keys this short only count as whole words ("td" must not match "outdoor")
WHOLE_WORD_KEYS = frozenset({'td', 'sax', 'foh', 'bgv', 'gfx'})


def _normalize(name: Optional[str]) -> str:
    return ' '.join((name or '').lower().split())


def _key_in_name(key: str, normalized: str) -> bool:
    if key in WHOLE_WORD_KEYS:
        return re.search(rf'(?<![a-z0-9]){re.escape(key)}(?![a-z0-9])', normalized) is not None
    return key in normalized


def lookup_by_name(table: Dict[str, object], name: Optional[str]):
    """
    Exact match first, then the longest table key contained in the name, then
    the shortest key that contains the name. None when nothing fits.
    """
    normalized = _normalize(name)
    if not normalized:
        return None

    if normalized in table:
        return table[normalized]

    for key in sorted(table, key=len, reverse=True):
        if _key_in_name(key, normalized):
            return table[key]

    for key in sorted(table, key=len):
        if normalized in key:
            return table[key]

    return None


def map_role_to_position(name: Optional[str]) -> Optional[str]:
    """Map a Planning Center team or role name to a local position; None means skip"""
    return lookup_by_name(ROLE_POSITIONS, name)


def map_audio_position(name: Optional[str]) -> Optional[Tuple[str, str]]:
    return lookup_by_name(AUDIO_POSITIONS, name)


def map_video_position(name: Optional[str]) -> Optional[Tuple[str, str]]:
    return lookup_by_name(VIDEO_POSITIONS, name)


def team_kinds(team_name: Optional[str]) -> Set[str]:
    """Which schedule team kinds ('audio', 'video') a Planning Center team feeds"""
    lower = (team_name or '').lower()
    kinds = set()
    if any(pattern in lower for pattern in AUDIO_TEAM_PATTERNS):
        kinds.add('audio')
    if any(pattern in lower for pattern in VIDEO_TEAM_PATTERNS):
        kinds.add('video')
    return kinds


def is_student_ministry(name: Optional[str]) -> bool:
    lower = _normalize(name)
    return any(pattern.search(lower) for pattern in STUDENT_PATTERNS)


class CampusClassifier:
    """Maps service type names to campus ids and decides which collections to sync"""

    def __init__(self, campuses: Iterable[Dict], default_campus_id: Optional[str] = None):
        self.campuses: List[Tuple[str, str]] = [
            (c['id'], _normalize(c.get('name'))) for c in campuses or [] if c.get('name')
        ]
        self.default_campus_id = default_campus_id

    def _campus_containing(self, fragment: str) -> Optional[str]:
        for campus_id, campus_name in self.campuses:
            if fragment in campus_name:
                return campus_id
        return None

    def _named_campus(self, lower: str) -> Optional[str]:
        for campus_id, campus_name in self.campuses:
            if campus_name in lower:
                return campus_id
            if any(alias in lower for alias in CAMPUS_ALIASES.get(campus_name, ())):
                return campus_id
        return None

    def campus_for(self, service_type_name: Optional[str]) -> Optional[str]:
        """
        Campus id for a service type.

        A campus named in the collection wins. Network-wide collections map to
        None. Student ministries use their abbreviation, else the central campus.
        Everything else falls back to the connection's campus.
        """
        if not self.campuses:
            return self.default_campus_id

        lower = _normalize(service_type_name)

        campus_id = self._named_campus(lower)
        if campus_id:
            return campus_id

        if any(pattern in lower for pattern in NETWORK_WIDE_PATTERNS):
            return None

        if is_student_ministry(lower):
            for markers, fragment in STUDENT_CAMPUS_ABBREVIATIONS:
                if any(marker in lower for marker in markers):
                    campus_id = self._campus_containing(fragment)
                    if campus_id:
                        return campus_id
            return self._campus_containing(STUDENT_DEFAULT_CAMPUS) or self.default_campus_id

        return self.default_campus_id

    def is_allowed(self, service_type_name: Optional[str]) -> bool:
        """Weekend campus services, worship nights and the student ministries; never practice songs"""
        lower = _normalize(service_type_name)
        if not lower:
            return False

        if any(pattern in lower for pattern in EXCLUDED_COLLECTION_PATTERNS):
            return False

        if any(campus_name in lower for _, campus_name in self.campuses):
            return True

        return any(pattern.search(lower) for pattern in ALLOWED_COLLECTION_PATTERNS)
