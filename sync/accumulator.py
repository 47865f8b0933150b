# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Plan Accumulator - rows collected during a run, waiting to be flushed
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class PlanAccumulator:
    """
    Plans, songs and per-plan song links keyed by Planning Center id.

    ``plan_links`` only holds plans whose items were fetched successfully, so a
    plan that now has zero songs still gets its old links cleared.
    """
    plans: Dict[str, Dict] = field(default_factory=dict)
    songs: Dict[str, Dict] = field(default_factory=dict)
    plan_links: Dict[str, List[Dict]] = field(default_factory=dict)

    def add_plan(self, record: Dict):
        self.plans[record['pco_plan_id']] = record

    def add_song(self, record: Dict):
        existing = self.songs.get(record['pco_song_id'])
        if existing:
            # Keep non-empty values seen earlier in the run
            merged = dict(existing)
            merged.update({k: v for k, v in record.items() if v not in (None, '')})
            self.songs[record['pco_song_id']] = merged
        else:
            self.songs[record['pco_song_id']] = record

    def set_links(self, pco_plan_id: str, links: List[Dict]):
        """links: [{'pco_song_id', 'sequence_order', 'song_key'}] in item order"""
        self.plan_links[pco_plan_id] = links

    @property
    def plan_count(self) -> int:
        return len(self.plans)

    def is_empty(self) -> bool:
        return not self.plans and not self.songs

    def clear(self):
        self.plans.clear()
        self.songs.clear()
        self.plan_links.clear()


def song_record(song: Dict) -> Optional[Dict]:
    """Song resource (or included Song) to a `songs` row"""
    song_id = song.get('id')
    if not song_id:
        return None
    attributes = song.get('attributes') or {}
    ccli = attributes.get('ccli_number')
    return {
        'pco_song_id': str(song_id),
        'title': attributes.get('title') or 'Unknown Song',
        'author': attributes.get('author'),
        'ccli_number': str(ccli) if ccli not in (None, '') else None,
    }
