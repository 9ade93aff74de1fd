"""
Tests for patient feature flags

The echoed intake record is lenient: malformed fields fall back to
defaults instead of raising.
"""


class TestFlagsFromEcho:

    def test_full_record(self):
        from services.personalization.intake import flags_from_echo

        flags = flags_from_echo({
            "level_of_care": "ICU",
            "mobility_status": "Bedbound",
            "cognitive_status": "delirium_dementia",
            "days_immobile": "4 days",
            "age": 82,
            "devices": ["foley", "central_line"],
            "comorbidities": ["Stroke", "malnutrition"],
            "medications": ["Lorazepam 1mg", "acetaminophen"],
            "admission_diagnosis": "Post-op hip fracture",
            "incontinent": 1,
        })

        assert flags.loc == "icu"
        assert flags.mob == "bedbound"
        assert flags.cog == "delirium_dementia"
        assert flags.days_immobile == 4
        assert flags.age70 and flags.age80
        assert flags.devices is True
        assert flags.neuro is True
        assert flags.malnutrition is True
        assert flags.active_cancer is False
        assert flags.sedating is True
        assert flags.postop is True
        assert flags.trauma is False
        assert flags.incontinent is True

    def test_missing_echo_gives_defaults(self):
        from services.personalization.intake import PatientFeatureFlags, flags_from_echo

        assert flags_from_echo(None) == PatientFeatureFlags()
        assert flags_from_echo({}) == PatientFeatureFlags()

    def test_garbage_fields_fall_back(self):
        from services.personalization.intake import flags_from_echo

        flags = flags_from_echo({
            "level_of_care": 3,
            "mobility_status": "",
            "age": "unknown",
            "days_immobile": None,
            "devices": "none-listed",
            "comorbidities": 17,
        })

        assert flags.loc == "ward"
        assert flags.mob == "bedbound"
        assert flags.age == 0
        assert flags.days_immobile == 0
        assert flags.devices is True  # a non-empty string is one device
        assert flags.malnutrition is False

    def test_neuro_from_admission_keywords(self):
        from services.personalization.intake import flags_from_echo

        assert flags_from_echo({"admission_diagnosis": "Intracranial hemorrhage"}).neuro is True
        assert flags_from_echo({"admission_diagnosis": "TBI after fall"}).neuro is True
        assert flags_from_echo({"admission_diagnosis": "Polytrauma"}).trauma is True

    def test_age_thresholds(self):
        from services.personalization.intake import flags_from_echo

        flags = flags_from_echo({"age": 70.9})
        assert flags.age == 70
        assert flags.age70 is True
        assert flags.age80 is False

    def test_to_dict(self):
        from services.personalization.intake import flags_from_echo

        assert flags_from_echo({"age": 75}).to_dict()["age70"] is True
