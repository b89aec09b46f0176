"""Tests for the Connection class."""

from facemerge.core.connection import Connection
from factories import make_connection


def test_connection_creation():
    """Test basic connection creation."""
    conn = Connection(id='c1', owner_id='u1', from_person_id='a', to_person_id='b', types=['friend'])

    assert conn.strength is None
    assert conn.reasons == []
    assert conn.is_valid()


def test_endpoints():
    """Test endpoint helpers."""
    conn = make_connection('c1', 'a', 'b')

    assert conn.involves('a') and conn.involves('b')
    assert not conn.involves('c')
    assert conn.other_person_id('a') == 'b'
    assert conn.other_person_id('b') == 'a'
    assert conn.other_person_id('c') is None
    assert conn.endpoint_key() == make_connection('c2', 'b', 'a').endpoint_key()


def test_replace_endpoint():
    """Test rewriting an endpoint keeps direction."""
    conn = make_connection('c1', 'b', 'c', types=['colleague'])

    conn.replace_endpoint('b', 'a')

    assert conn.from_person_id == 'a'
    assert conn.to_person_id == 'c'
    assert conn.types == ['colleague']


def test_replace_endpoint_can_create_self_loop():
    """Test that rewriting onto the other endpoint is detectable."""
    conn = make_connection('c1', 'a', 'b')

    conn.replace_endpoint('b', 'a')

    assert conn.is_self_loop()


def test_validate():
    """Test business rule validation."""
    assert make_connection('c1', 'a', 'a').validate()
    assert Connection(id='c2', owner_id='u1', from_person_id='a', to_person_id='b').validate()
    assert make_connection('c3', 'a', 'b', strength=0).validate()
    assert make_connection('c4', 'a', 'b', strength=6).validate()
    assert make_connection('c5', 'a', 'b', types=['parent', 'child']).validate()

    assert make_connection('c6', 'a', 'b', strength=5).validate() == []


def test_types_and_reasons():
    """Test adding tags without duplicates."""
    conn = make_connection('c1', 'a', 'b', types=['friend'])

    conn.add_type('friend')
    conn.add_type('colleague')
    conn.add_reason('Same team')
    conn.add_reason('Same team')

    assert conn.types == ['friend', 'colleague']
    assert conn.reasons == ['Same team']
    assert conn.has_type('colleague')


def test_is_bidirectional():
    assert make_connection('c1', 'a', 'b', types=['friend']).is_bidirectional()
    assert not make_connection('c2', 'a', 'b', types=['manager']).is_bidirectional()


def test_strength_bucket():
    """Test strength classification, unset counting as medium."""
    assert make_connection('c1', 'a', 'b').strength_bucket() == 'medium'
    assert make_connection('c2', 'a', 'b', strength=0).strength_bucket() == 'medium'
    assert make_connection('c3', 'a', 'b', strength=1).strength_bucket() == 'weak'
    assert make_connection('c4', 'a', 'b', strength=2).strength_bucket() == 'medium'
    assert make_connection('c5', 'a', 'b', strength=3).strength_bucket() == 'medium'
    assert make_connection('c6', 'a', 'b', strength=4).strength_bucket() == 'strong'
    assert make_connection('c7', 'a', 'b', strength=5).strength_bucket() == 'strong'


def test_serialization():
    """Test to_dict/from_dict preserve the record."""
    conn = make_connection('c1', 'a', 'b', types=['friend', 'colleague'], strength=4, notes='hi')

    restored = Connection.from_dict(conn.to_dict())

    assert restored.types == ['friend', 'colleague']
    assert restored.strength == 4
    assert restored.notes == 'hi'
    assert restored.updated_at == conn.updated_at
