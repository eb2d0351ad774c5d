"""Tests for deterministic bucketing."""
from flagkit.core.hashing import BUCKET_COUNT, bucket, experiment_salt, flag_salt


def test_bucket_is_deterministic():
    """Test that the same identifier and salt always land in the same bucket."""
    salt = flag_salt("dark-mode")

    bucket1 = bucket("user_123", salt)
    bucket2 = bucket("user_123", salt)
    bucket3 = bucket("user_123", salt)

    assert bucket1 == bucket2 == bucket3, "Bucketing should be deterministic"


def test_bucket_range():
    """Test that buckets are integers in [0, 100)."""
    for i in range(1000):
        value = bucket(f"user_{i}", flag_salt("range"))
        assert isinstance(value, int)
        assert 0 <= value < BUCKET_COUNT


def test_bucket_distribution_is_uniform():
    """Test that 10k users spread evenly over the ten deciles."""
    deciles = [0] * 10
    for i in range(10_000):
        deciles[bucket(f"user_{i}", flag_salt("uniformity")) // 10] += 1

    # 1000 expected per decile, allow 15%
    for count in deciles:
        assert 850 <= count <= 1150, f"Uneven distribution: {deciles}"


def test_salt_makes_assignment_independent():
    """Test that two keys do not bucket users identically, or by a fixed shift."""
    pairs = [
        (bucket(f"user_{i}", flag_salt("one")), bucket(f"user_{i}", flag_salt("two")))
        for i in range(1000)
    ]
    same = sum(1 for b1, b2 in pairs if b1 == b2)
    offsets = {(b2 - b1) % BUCKET_COUNT for b1, b2 in pairs}

    # Independent buckets agree about 1% of the time
    assert same < 50
    # A constant offset would keep the two keys correlated
    assert len(offsets) > 50


def test_flag_and_experiment_salts_differ():
    """Test that a flag and an experiment with the same key use different salts."""
    assert flag_salt("checkout") != experiment_salt("checkout")


def test_anonymous_user_gets_stable_bucket():
    """Test that an empty identifier is still a valid, stable input."""
    assert bucket("", flag_salt("anon")) == bucket("", flag_salt("anon"))
    assert 0 <= bucket("", flag_salt("anon")) < BUCKET_COUNT
