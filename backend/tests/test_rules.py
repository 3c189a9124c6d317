from datetime import date, timedelta

from fleetforms.rules import (
    Compare,
    DuplicateRecords,
    ExpiryNotice,
    Pattern,
    Required,
    ValidationEngine,
    has_blocking,
    root_field,
)
from fleetforms.schemas import RuleRightConstant, RuleRightField

TODAY = date(2026, 10, 19)


def _engine(rules, warning_days=30):
    return ValidationEngine(rules, today=lambda: TODAY, expiry_warning_days=warning_days)


def test_root_field():
    assert root_field("AdditionalContacts[1].Email") == "AdditionalContacts"
    assert root_field("PrimaryContact.CustomerMobileNo") == "PrimaryContact"
    assert root_field("OpeningKM") == "OpeningKM"


def test_repeated_passes_replace_rather_than_append():
    engine = _engine([Required("Name", "Name is required")])
    errors = engine.validate({"Name": None}, changed=["Name"])
    errors = engine.validate({"Name": None}, changed=["Name"], previous=errors)
    errors = engine.validate({"Name": None}, changed=["Name"], previous=errors)

    assert len(errors["Name"]) == 1


def test_partial_pass_keeps_unrelated_errors():
    engine = _engine([Required("Name", "Name is required"), Required("City", "City is required")])
    errors = engine.validate({"Name": None, "City": None})
    assert set(errors) == {"Name", "City"}

    errors = engine.validate({"Name": "Acme", "City": None}, changed=["Name"], previous=errors)
    assert set(errors) == {"City"}


def test_all_rules_of_a_target_rerun_together():
    rules = [
        Required("DriverNumber", "Driver Number is required"),
        Pattern("DriverNumber", r"^\d{10}$", "Driver Number must be exactly 10 digits"),
    ]
    engine = _engine(rules)
    errors = engine.validate({"DriverNumber": "123"})
    assert [e.kind for e in errors["DriverNumber"]] == ["FormatError"]

    errors = engine.validate({"DriverNumber": None}, changed=["DriverNumber"], previous=errors)
    assert [e.kind for e in errors["DriverNumber"]] == ["RequiredFieldError"]


def test_conditional_requirement_reruns_when_the_flag_changes():
    engine = _engine([
        Required("BGDate", "BG date is required", when=lambda v: v.get("BG") == "Yes", depends_on=["BG"]),
    ])
    errors = engine.validate({"BG": "No", "BGDate": None})
    assert errors == {}

    errors = engine.validate({"BG": "Yes", "BGDate": None}, changed=["BG"], previous=errors)
    assert [e.kind for e in errors["BGDate"]] == ["RequiredFieldError"]


def test_cross_field_ordering_follows_the_start_field():
    engine = _engine([
        Compare("POExpiryDate", ">", RuleRightField(field="PODate"), "must be after PO date",
                kind="CrossFieldOrderError"),
    ])
    values = {"PODate": date(2026, 1, 1), "POExpiryDate": date(2027, 1, 1)}
    errors = engine.validate(values)
    assert errors == {}

    values["PODate"] = date(2027, 6, 1)
    errors = engine.validate(values, changed=["PODate"], previous=errors)
    assert [e.kind for e in errors["POExpiryDate"]] == ["CrossFieldOrderError"]


def test_compare_skips_blank_operands():
    engine = _engine([Compare("OpeningKM", ">=", RuleRightConstant(value=0), "negative")])
    assert engine.validate({"OpeningKM": None}) == {}
    assert "OpeningKM" in engine.validate({"OpeningKM": -1})


def test_duplicates_flagged_once_on_the_later_entry():
    engine = _engine([DuplicateRecords("AdditionalContacts", ("Name", "Mobile", "Email"), label="Contact")])
    contact = {"Name": "Ravi", "Mobile": "9876543210", "Email": "ravi@example.com"}

    errors = engine.validate({"AdditionalContacts": [dict(contact), dict(contact)]})

    assert list(errors) == ["AdditionalContacts[1]"]
    assert len(errors["AdditionalContacts[1]"]) == 1
    assert errors["AdditionalContacts[1]"][0].kind == "DuplicateRecordError"


def test_blank_entries_are_never_duplicates():
    engine = _engine([DuplicateRecords("AdditionalContacts", ("Name", "Mobile", "Email"))])
    blank = {"Name": "", "Mobile": "", "Email": ""}
    assert engine.validate({"AdditionalContacts": [dict(blank), dict(blank)]}) == {}


def test_entries_differing_in_one_key_part_are_distinct():
    engine = _engine([DuplicateRecords("AdditionalContacts", ("Name", "Mobile", "Email"))])
    first = {"Name": "Ravi", "Mobile": "9876543210", "Email": "ravi@example.com"}
    second = dict(first, Email="ravi@other.com")
    assert engine.validate({"AdditionalContacts": [first, second]}) == {}


def test_nested_errors_are_cleared_by_a_partial_pass_on_their_root():
    rule = DuplicateRecords("AdditionalContacts", ("Name",))
    engine = _engine([rule])
    errors = engine.validate({"AdditionalContacts": [{"Name": "A"}, {"Name": "A"}]})
    assert "AdditionalContacts[1]" in errors

    errors = engine.validate(
        {"AdditionalContacts": [{"Name": "A"}, {"Name": "B"}]},
        changed=["AdditionalContacts"],
        previous=errors,
    )
    assert errors == {}


def test_expiry_notices_are_advisory():
    engine = _engine([ExpiryNotice("BGExpiryDate", "Bank Guarantee")])

    soon = engine.validate({"BGExpiryDate": TODAY + timedelta(days=10)})
    assert soon["BGExpiryDate"][0].severity == "advisory"
    assert "expires in 10 days" in soon["BGExpiryDate"][0].message
    assert not has_blocking(soon)

    expired = engine.validate({"BGExpiryDate": TODAY - timedelta(days=1)})
    assert "has expired" in expired["BGExpiryDate"][0].message

    assert engine.validate({"BGExpiryDate": TODAY + timedelta(days=90)}) == {}


def test_has_blocking():
    engine = _engine([Required("Name", "Name is required")])
    assert has_blocking(engine.validate({"Name": ""}))
    assert not has_blocking(engine.validate({"Name": "Acme"}))
