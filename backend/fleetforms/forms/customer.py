"""Customer master form."""
from __future__ import annotations

import re
from datetime import date

from fleetforms import formulas
from fleetforms.fields import FieldDef, is_blank
from fleetforms.forms.base import FormDefinition, LookupSpec
from fleetforms.graph import DerivedFieldSpec
from fleetforms.rules import Check, Compare, DuplicateRecords, ExpiryNotice, Pattern, Required
from fleetforms.schemas import FieldError, RuleRightConstant, RuleRightField

MOBILE = r"^[6-9]\d{9}$"
EMAIL = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
NAME_CHARS = r"^[a-zA-Z0-9\s\-&.,()]+$"

ADDRESS_FIELDS = (
    ("house_flat_no", "Flat/House number"),
    ("street_locality", "Street/Locality"),
    ("city", "City"),
    ("state", "State"),
    ("pin_code", "PIN code"),
    ("country", "Country"),
)


def _yes_no(fid, label=""):
    return FieldDef(fid, "text", label, default="No")


FIELDS = [
    FieldDef("MasterCustomerName", "text", "Master Customer Name"),
    FieldDef("Name", "text", "Company Name"),
    FieldDef("CustomerCode", "text", "Customer Code"),
    FieldDef("TypeOfServices", "text", "Type of Services"),
    FieldDef("ServiceCode", "text", "Service Code"),
    FieldDef("CustomerSite", "list", "Customer Sites", default=[{"location": "", "sites": []}]),
    _yes_no("Agreement"),
    FieldDef("AgreementFile", "file"),
    FieldDef("AgreementDate", "date", "Agreement Date"),
    FieldDef("AgreementTenure", "number", "Agreement Tenure (years)"),
    FieldDef("AgreementExpiryDate", "date", "Agreement Expiry Date"),
    FieldDef("CustomerNoticePeriod", "text"),
    FieldDef("CogentNoticePeriod", "text"),
    FieldDef("CreditPeriod", "text"),
    _yes_no("Insurance"),
    FieldDef("MinimumInsuranceValue", "number"),
    _yes_no("CogentDebitClause"),
    FieldDef("CogentDebitLimit", "number"),
    _yes_no("BG", "Bank Guarantee"),
    FieldDef("BGFile", "file"),
    FieldDef("BGAmount", "number", "BG Amount"),
    FieldDef("BGDate", "date", "BG Date"),
    FieldDef("BGExpiryDate", "date", "BG Expiry Date"),
    FieldDef("BGBank", "text"),
    FieldDef("BGReceivingByCustomer", "text"),
    FieldDef("BGReceivingFile", "file"),
    FieldDef("PO", "text", "PO Number"),
    FieldDef("POFile", "file"),
    FieldDef("POValue", "number", "PO Value"),
    FieldDef("PODate", "date", "PO Date"),
    FieldDef("POTenure", "text", "PO Tenure"),
    FieldDef("POExpiryDate", "date", "PO Expiry Date"),
    FieldDef("Rates", "text"),
    FieldDef("RatesAnnexureFile", "file"),
    _yes_no("YearlyEscalationClause"),
    FieldDef("GSTNo", "text"),
    FieldDef("GSTRate", "number"),
    FieldDef("TypeOfBilling", "text", default="RCM"),
    FieldDef("BillingTenure", "text"),
    FieldDef("BillingFromDate", "date", "Billing From Date"),
    FieldDef("BillingToDate", "date", "Billing To Date"),
    FieldDef("MISFormatFile", "file"),
    FieldDef("KPISLAFile", "file"),
    FieldDef("PerformanceReportFile", "file"),
    FieldDef("PrimaryContact", "object", "Primary Contact", default={}),
    *[FieldDef(fid, "text", label) for fid, label in ADDRESS_FIELDS if fid != "country"],
    FieldDef("country", "text", "Country", default="India"),
    FieldDef("AdditionalContacts", "list", "Additional Contacts", default=[]),
    FieldDef("CustomerCogentContact", "object", "Cogent Contact", default={}),
]

DERIVED = [
    DerivedFieldSpec("ServiceCode", ("TypeOfServices",), formulas.service_code),
    DerivedFieldSpec("AgreementExpiryDate", ("AgreementDate", "AgreementTenure"), formulas.expiry_after_years),
    DerivedFieldSpec("POExpiryDate", ("PODate", "POTenure"), formulas.expiry_after_tenure),
]


def _flag(field_id):
    return lambda values: values.get(field_id) == "Yes"


def _po_given(values):
    return not is_blank(values.get("PO"))


def _specific_dates(values):
    return values.get("BillingTenure") == "Specific Dates"


def _matches(pattern, value, digits_only=False):
    text = str(value).strip()
    if digits_only:
        text = re.sub(r"\D", "", text)
    return re.match(pattern, text) is not None


def _nested_formats(field_id, checks):
    """Format checks on keys of a structured sub-object."""

    def check(values, ctx):
        data = values.get(field_id) or {}
        errors = []
        for key, pattern, digits_only, message in checks:
            value = data.get(key)
            if not is_blank(value) and not _matches(pattern, value, digits_only):
                errors.append(FieldError(field=f"{field_id}.{key}", kind="FormatError", message=message))
        return errors

    return Check([field_id], [], check)


def _check_sites(values, ctx):
    sites = values.get("CustomerSite") or []
    if any(isinstance(s, dict) and not is_blank(s.get("location")) for s in sites):
        return []
    return [FieldError(field="CustomerSite", kind="RequiredFieldError", message="At least one location is required")]


def _check_contacts(values, ctx):
    errors = []
    for index, contact in enumerate(values.get("AdditionalContacts") or []):
        if not isinstance(contact, dict):
            continue
        name, mobile, email = (contact.get(k) for k in ("Name", "Mobile", "Email"))
        if all(is_blank(v) for v in (name, mobile, email)):
            continue

        path = f"AdditionalContacts[{index}]"
        prefix = f"Contact {index + 1}"
        if is_blank(name):
            errors.append(FieldError(field=f"{path}.Name", kind="RequiredFieldError",
                                     message=f"{prefix}: Name is required"))
        if not is_blank(mobile) and not _matches(MOBILE, mobile, digits_only=True):
            errors.append(FieldError(field=f"{path}.Mobile", kind="FormatError",
                                     message=f"{prefix}: Mobile number must be 10 digits starting with 6-9"))
        if not is_blank(email) and not _matches(EMAIL, email):
            errors.append(FieldError(field=f"{path}.Email", kind="FormatError",
                                     message=f"{prefix}: Please enter a valid email address"))

        dob = contact.get("DOB")
        if not is_blank(dob):
            try:
                born = date.fromisoformat(str(dob)[:10])
            except ValueError:
                errors.append(FieldError(field=f"{path}.DOB", kind="FormatError",
                                         message=f"{prefix}: Date of birth is not a valid date"))
            else:
                if born > ctx.today:
                    errors.append(FieldError(field=f"{path}.DOB", kind="RangeError",
                                             message=f"{prefix}: Date of birth cannot be in the future"))
    return errors


def _name_rules(field_id, label):
    return [
        Required(field_id, f"{label} is required"),
        Pattern(field_id, r"^.{2,}$", f"{label} must be at least 2 characters long"),
        Pattern(
            field_id, NAME_CHARS,
            f"{label} can only contain letters, numbers, spaces, hyphens, ampersands, periods, commas, and parentheses",
        ),
    ]


def _after(field_id, start_id, message, when=None, depends_on=()):
    return Compare(
        field_id, ">", RuleRightField(field=start_id), message,
        kind="CrossFieldOrderError", when=when, depends_on=depends_on,
    )


POSITIVE = RuleRightConstant(value=0)

RULES = [
    *_name_rules("Name", "Company name"),
    *_name_rules("MasterCustomerName", "Master customer name"),
    Required("TypeOfServices", "Please select a type of service"),
    # agreement
    _after("AgreementExpiryDate", "AgreementDate", "Agreement expiry date must be after agreement date",
           when=_flag("Agreement"), depends_on=["Agreement"]),
    # bank guarantee
    Required("BGDate", "BG date is required when BG is Yes", when=_flag("BG"), depends_on=["BG"]),
    Required("BGExpiryDate", "BG expiry date is required when BG is Yes", when=_flag("BG"), depends_on=["BG"]),
    _after("BGExpiryDate", "BGDate", "BG expiry date must be after BG date"),
    Required("BGAmount", "BG amount is required when BG is Yes", when=_flag("BG"), depends_on=["BG"]),
    Compare("BGAmount", ">", POSITIVE, "BG amount must be greater than 0 when BG is Yes",
            when=_flag("BG"), depends_on=["BG"]),
    # purchase order
    Required("PODate", "PO date is required when PO number is provided", when=_po_given, depends_on=["PO"]),
    Required("POExpiryDate", "PO expiry date is required when PO number is provided",
             when=_po_given, depends_on=["PO"]),
    _after("POExpiryDate", "PODate", "PO expiry date must be after PO date"),
    Required("POValue", "PO value is required when PO number is provided", when=_po_given, depends_on=["PO"]),
    Compare("POValue", ">", POSITIVE, "PO value must be greater than 0 when PO number is provided",
            when=_po_given, depends_on=["PO"]),
    # expiry reminders never block
    ExpiryNotice("AgreementExpiryDate", "Agreement"),
    ExpiryNotice("BGExpiryDate", "Bank Guarantee"),
    ExpiryNotice("POExpiryDate", "Purchase Order"),
    # contacts
    _nested_formats("PrimaryContact", [
        ("CustomerMobileNo", MOBILE, True, "Mobile number must be 10 digits starting with 6-9"),
        ("AlternateMobileNo", MOBILE, True, "Alternate mobile number must be 10 digits starting with 6-9"),
        ("CustomerEmail", EMAIL, False, "Please enter a valid email address"),
    ]),
    _nested_formats("CustomerCogentContact", [
        ("MobileNo", MOBILE, True, "Mobile number must be 10 digits starting with 6-9"),
        ("EmailID", EMAIL, False, "Please enter a valid email address"),
    ]),
    Check(["AdditionalContacts"], [], _check_contacts),
    DuplicateRecords("AdditionalContacts", ("Name", "Mobile", "Email"), label="Contact"),
    # address
    *[Required(fid, f"{label} is required") for fid, label in ADDRESS_FIELDS],
    Pattern("pin_code", r"^\d{6}$", "PIN code must be exactly 6 digits"),
    # sites and billing
    Check(["CustomerSite"], [], _check_sites),
    Required("BillingFromDate", "Billing From Date is required when Specific Dates is selected",
             when=_specific_dates, depends_on=["BillingTenure"]),
    Required("BillingToDate", "Billing To Date is required when Specific Dates is selected",
             when=_specific_dates, depends_on=["BillingTenure"]),
    _after("BillingToDate", "BillingFromDate", "Billing To Date must be after Billing From Date"),
]


def customer_code_seed(values) -> str:
    parts = [str(values.get(k) or "").strip() for k in ("MasterCustomerName", "Name")]
    return " ".join(p for p in parts if p)


CUSTOMER_FORM = FormDefinition(
    form_type="customer",
    resource="customers",
    fields=FIELDS,
    derived=DERIVED,
    rules=RULES,
    lookups=[LookupSpec("CustomerCode", ("MasterCustomerName", "Name"), customer_code_seed)],
    server_generated=["CustomerCode"],
)
