"""
Classification tests - campus mapping, collection filter and role tables
"""

import pytest

from sync.classification import (
    CampusClassifier,
    map_audio_position,
    map_role_to_position,
    map_video_position,
    team_kinds,
)

CAMPUSES = [
    {'id': 'central', 'name': 'Murfreesboro Central'},
    {'id': 'north', 'name': 'Murfreesboro North'},
    {'id': 'cannon', 'name': 'Cannon County'},
    {'id': 'tullahoma', 'name': 'Tullahoma'},
]


@pytest.fixture
def classifier():
    return CampusClassifier(CAMPUSES, default_campus_id='default')


class TestCampusMapping:
    """campus_for"""

    @pytest.mark.classification
    @pytest.mark.parametrize('name, expected', [
        ('Murfreesboro Central Sunday', 'central'),
        ('TULLAHOMA Worship', 'tullahoma'),
        ('Cannon Weekend', 'cannon'),
        ('Boro North Services', 'north'),
    ])
    def test_named_campus(self, classifier, name, expected):
        assert classifier.campus_for(name) == expected

    @pytest.mark.classification
    @pytest.mark.parametrize('name', ['Worship Night', 'All Team Rehearsal', 'Prayer Night'])
    def test_network_wide_collections_have_no_campus(self, classifier, name):
        assert classifier.campus_for(name) is None

    @pytest.mark.classification
    @pytest.mark.parametrize('name, expected', [
        ('Encounter (CC)', 'cannon'),
        ('EON (Boro)', 'central'),
        ('Evident', 'central'),
        ('ER Wednesday', 'central'),
    ])
    def test_student_ministries(self, classifier, name, expected):
        assert classifier.campus_for(name) == expected

    @pytest.mark.classification
    def test_unknown_collection_uses_connection_campus(self, classifier):
        assert classifier.campus_for('Staff Meeting') == 'default'

    @pytest.mark.classification
    def test_no_campuses_uses_connection_campus(self):
        assert CampusClassifier([], 'default').campus_for('Murfreesboro Central') == 'default'


class TestCollectionFilter:
    """is_allowed"""

    @pytest.mark.classification
    @pytest.mark.parametrize('name', [
        'Murfreesboro Central', 'Worship Nights', 'Encounter (CC)', 'EON Boro', 'Evident', 'ER',
    ])
    def test_allowed(self, classifier, name):
        assert classifier.is_allowed(name)

    @pytest.mark.classification
    @pytest.mark.parametrize('name', [
        'Practice Songs', 'Murfreesboro Central Practice Songs', 'Staff Meeting', 'Leadership Summer', '',
    ])
    def test_rejected(self, classifier, name):
        assert not classifier.is_allowed(name)


class TestRoleTables:
    """Role and slot mapping"""

    @pytest.mark.classification
    @pytest.mark.parametrize('name, expected', [
        ('Drums', 'drums'),
        ('  Lead Vocals ', 'lead_vocals'),
        ('Acoustic Guitar 2', 'acoustic_guitar'),
        ('Bass Guitar', 'bass'),
        ('Worship Leader - Sunday', 'lead_vocals'),
        ('Key', 'keys'),
        ('Vocalist', 'lead_vocals'),
        ('Vocalists', 'lead_vocals'),
        ('Keyboardist', 'keys'),
        ('Bassist', 'bass'),
        ('Pianist', 'piano'),
        ('Electric Guitar 1', 'electric_guitar'),
    ])
    def test_role_positions(self, name, expected):
        assert map_role_to_position(name) == expected

    @pytest.mark.classification
    @pytest.mark.parametrize('name', ['', None, 'Greeters', 'Parking'])
    def test_unknown_roles_are_skipped(self, name):
        assert map_role_to_position(name) is None

    @pytest.mark.classification
    def test_longest_key_wins(self):
        assert map_audio_position('Audio Shadow') == ('audio_shadow', 'audio_shadow')
        assert map_video_position('Camera 3 Operator') == ('camera_3', 'camera_3')
        assert map_video_position('Chat Host') == ('chat_host', 'chat_host')

    @pytest.mark.classification
    def test_short_keys_match_whole_words_only(self):
        assert map_video_position('TD') == ('director', 'director')
        assert map_video_position('Standby') is None
        assert map_video_position('Outdoor Setup') is None

    @pytest.mark.classification
    @pytest.mark.parametrize('team, expected', [
        ('Production Team', {'audio'}),
        ('Livestream', {'video'}),
        ('Tech & Video', {'audio', 'video'}),
        ('Band', set()),
    ])
    def test_team_kinds(self, team, expected):
        assert team_kinds(team) == expected
