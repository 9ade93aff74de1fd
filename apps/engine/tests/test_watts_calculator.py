"""
Tests for equivalent-watts conversions

Watts = METs x 3.5 x weight_kg / 200, rounded half up.
"""


class TestActivityWatts:

    def test_walking(self):
        """2.3 METs at 70kg = 2.8W"""
        from services.personalization.watts_calculator import calculate_walking_watts

        assert calculate_walking_watts(70) == 3

    def test_sitting(self):
        from services.personalization.watts_calculator import calculate_sitting_watts

        assert calculate_sitting_watts(70) == 2

    def test_cycling_scale(self):
        from services.personalization.watts_calculator import calculate_cycling_watts

        assert calculate_cycling_watts(1) == 15
        assert calculate_cycling_watts(10) == 60
        assert calculate_cycling_watts(5.5) == 38

    def test_cycling_resistance_clamped(self):
        from services.personalization.watts_calculator import calculate_cycling_watts

        assert calculate_cycling_watts(0) == 15
        assert calculate_cycling_watts(25) == 60


class TestEquivalentWatts:

    def test_dispatch(self):
        from services.personalization.watts_calculator import calculate_equivalent_watts

        assert calculate_equivalent_watts("walk", 70) == 3
        assert calculate_equivalent_watts("sit", 70) == 2
        assert calculate_equivalent_watts("ride", 70, resistance=10) == 60

    def test_ride_defaults_to_resistance_three(self):
        from services.personalization.watts_calculator import calculate_equivalent_watts

        assert calculate_equivalent_watts("ride", 70) == 25

    def test_transfer_and_unknown_are_zero(self):
        from services.personalization.watts_calculator import calculate_equivalent_watts

        assert calculate_equivalent_watts("transfer", 70) == 0
        assert calculate_equivalent_watts("swim", 70) == 0

    def test_mets_lookup(self):
        from services.personalization.watts_calculator import get_activity_mets

        assert get_activity_mets("ride", 5) == 5.0
        assert get_activity_mets("ride", 2) == 3.5
        assert get_activity_mets("transfer") == 3.0
        assert get_activity_mets("lying") == 1.0


class TestUnitConversion:

    def test_lbs_to_kg(self):
        from services.personalization.watts_calculator import lbs_to_kg

        assert lbs_to_kg(150) == 68.0

    def test_kg_to_lbs(self):
        from services.personalization.watts_calculator import kg_to_lbs

        assert kg_to_lbs(68) == 150


class TestPackageExports:

    def test_reexported_from_package(self):
        from services.personalization import calculate_equivalent_watts, lbs_to_kg

        assert calculate_equivalent_watts("ride", 70, resistance=1) == 15
        assert lbs_to_kg(0) == 0.0
