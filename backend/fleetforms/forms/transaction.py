"""Daily vehicle transaction form."""
from __future__ import annotations

from fleetforms import formulas
from fleetforms.fields import FieldDef, is_blank
from fleetforms.forms.base import Autofill, FormDefinition
from fleetforms.graph import DerivedFieldSpec
from fleetforms.rules import Check, Compare, Pattern, Required
from fleetforms.schemas import FieldError, RuleRightConstant, RuleRightField
from fleetforms.timecheck import TRANSACTION_CHECKPOINTS, duty_hours

FIXED = "Fixed"
ADHOC = "Adhoc"
REPLACEMENT = "Replacement"
TRANSACTION_TYPES = (FIXED, ADHOC, REPLACEMENT)

CHARGE_FIELDS = ("TollExpenses", "ParkingCharges", "LoadingCharges", "UnloadingCharges", "OtherCharges")


def _text(fid, label=""):
    return FieldDef(fid, "text", label)


def _number(fid, label=""):
    return FieldDef(fid, "number", label)


def _file(fid, label=""):
    return FieldDef(fid, "file", label)


FIELDS = [
    # master data
    _text("Customer", "Company Name"),
    _text("CompanyName"),
    _text("GSTNo"),
    _text("Project"),
    _text("Location"),
    _text("CustSite", "Location"),
    _text("VehiclePlacementType"),
    _text("VehicleType"),
    FieldDef("VehicleNo", "list", "Vehicle Numbers", default=[]),
    _text("VendorCode"),
    FieldDef("TypeOfTransaction", "text", "Type of Transaction", default=FIXED),
    FieldDef("SelectedDrivers", "list", "Drivers", default=[]),
    # daily entry
    _text("DriverID", "Driver"),
    _text("DriverMobileNo"),
    FieldDef("Date", "date", "Date"),
    _text("TripNo", "Trip Number"),
    _text("VehicleNumber", "Vehicle Number"),
    _text("VendorName", "Vendor Name"),
    _text("VendorNumber", "Vendor Number"),
    _text("DriverName", "Driver Name"),
    _text("DriverNumber", "Driver Number"),
    _text("DriverAadharNumber", "Aadhar Number"),
    _text("DriverLicenceNumber"),
    _text("ReplacementDriverName"),
    _text("ReplacementDriverNo"),
    _number("OpeningKM", "Opening KM"),
    _number("ClosingKM", "Closing KM"),
    _number("TotalKM", "Total KM"),
    _number("TotalShipmentsForDeliveries"),
    _number("TotalShipmentDeliveriesAttempted"),
    _number("TotalShipmentDeliveriesDone"),
    *[FieldDef(c.id, "time", c.label) for c in TRANSACTION_CHECKPOINTS],
    _number("TotalDutyHours", "Total Duty Hours"),
    # freight and charges
    _number("FixKm", "Fixed KM"),
    _number("VFreightFix", "Fixed Freight Rate"),
    _number("VFreightVariable", "Variable Freight Rate"),
    _number("TotalFreight", "Total Freight"),
    *[_number(c) for c in CHARGE_FIELDS],
    _text("OtherChargesRemarks"),
    _number("TotalExpenses", "Total Expenses"),
    _number("Revenue"),
    _number("Margin"),
    _number("MarginPercentage", "Margin %"),
    # advance / balance
    _text("AdvanceRequestNo", "Advance Request No"),
    _number("AdvanceApprovedAmount"),
    _number("AdvancePaidAmount", "Advance Paid Amount"),
    FieldDef("AdvancePaidDate", "date"),
    _number("BalanceToBePaid", "Balance to be Paid"),
    _number("BalancePaidAmount", "Balance Paid Amount"),
    FieldDef("BalancePaidDate", "date"),
    _number("Variance"),
    # supervisor
    _text("Remarks"),
    FieldDef("TripClose", "boolean", "Trip Close", default=False),
    # documents
    _file("DriverAadharDoc"),
    _file("DriverLicenceDoc"),
    _file("TollExpensesDoc"),
    _file("ParkingChargesDoc"),
    _file("OpeningKMImage"),
    _file("ClosingKMImage"),
]

DERIVED = [
    DerivedFieldSpec("TotalKM", ("ClosingKM", "OpeningKM"), formulas.difference),
    DerivedFieldSpec(
        "TotalDutyHours",
        (TRANSACTION_CHECKPOINTS[0].id, TRANSACTION_CHECKPOINTS[-1].id),
        duty_hours,
        rounding="2dp",
    ),
    DerivedFieldSpec(
        "TotalFreight",
        ("FixKm", "VFreightFix", "TotalKM", "VFreightVariable"),
        formulas.total_freight,
        rounding="2dp",
    ),
    DerivedFieldSpec("TotalExpenses", CHARGE_FIELDS, formulas.total, rounding="2dp", nulls="any"),
    DerivedFieldSpec("Revenue", ("TotalFreight",), formulas.identity, rounding="2dp"),
    DerivedFieldSpec("Margin", ("Revenue", "TotalExpenses"), formulas.difference, rounding="2dp"),
    DerivedFieldSpec("MarginPercentage", ("Margin", "Revenue"), formulas.margin_percentage, rounding="2dp"),
    DerivedFieldSpec("BalanceToBePaid", ("TotalFreight", "AdvancePaidAmount"), formulas.difference, rounding="2dp"),
    DerivedFieldSpec("Variance", ("BalanceToBePaid", "BalancePaidAmount"), formulas.difference, rounding="2dp"),
]


def _is_fixed(values):
    return values.get("TypeOfTransaction") == FIXED


def _is_adhoc_or_replacement(values):
    return values.get("TypeOfTransaction") in (ADHOC, REPLACEMENT)


def _not_na(value) -> bool:
    return not is_blank(value) and str(value).strip().lower() not in ("na", "n/a")


def _check_driver(values, ctx):
    if not _is_fixed(values):
        return []
    if values.get("SelectedDrivers") or not is_blank(values.get("DriverID")):
        return []
    return [FieldError(field="DriverID", kind="RequiredFieldError",
                       message="Driver must be selected for Fixed transactions")]


def _check_trip_no(values, ctx):
    trip_no = values.get("TripNo")
    if is_blank(trip_no):
        return []
    try:
        valid = int(str(trip_no).strip()) > 0
    except ValueError:
        valid = False
    if valid:
        return []
    return [FieldError(field="TripNo", kind="FormatError", message="Trip Number must be a positive integer")]


def _check_replacement_driver(values, ctx):
    # "NA" is the form's placeholder for "no replacement driver"
    if not _not_na(values.get("ReplacementDriverName")):
        return []
    number = values.get("ReplacementDriverNo")
    if not _not_na(number):
        return [FieldError(field="ReplacementDriverNo", kind="RequiredFieldError",
                           message="Replacement driver number is required when driver name is provided")]
    if len(str(number).strip()) != 10 or not str(number).strip().isdigit():
        return [FieldError(field="ReplacementDriverNo", kind="FormatError",
                           message="Replacement driver number must be exactly 10 digits")]
    return []


def _adhoc_required(field_id, label):
    return Required(
        field_id,
        f"{label} is required for Adhoc/Replacement transactions",
        when=_is_adhoc_or_replacement,
        depends_on=["TypeOfTransaction"],
    )


def _digits(field_id, count, label, when=None):
    return Pattern(
        field_id,
        rf"^\d{{{count}}}$",
        f"{label} must be exactly {count} digits",
        when=when,
        depends_on=["TypeOfTransaction"] if when else [],
    )


def _fill_advance_request_no(values, now):
    kind = values.get("TypeOfTransaction")
    if kind in (ADHOC, REPLACEMENT) and is_blank(values.get("AdvanceRequestNo")):
        return {"AdvanceRequestNo": now.strftime("ARN-%Y%m%d-%H%M%S")}
    if kind == FIXED and not is_blank(values.get("AdvanceRequestNo")):
        return {"AdvanceRequestNo": None}
    return {}


ZERO = RuleRightConstant(value=0)

RULES = [
    Required("Customer", "Company Name is required"),
    Required("Project", "Project is required"),
    Required("CustSite", "Location is required"),
    Required("Date", "Date is required"),
    Required("OpeningKM", "Opening KM is required"),
    Required("ClosingKM", "Closing KM is required"),
    Required("TripNo", "Trip Number is required"),
    Check(["TripNo"], [], _check_trip_no),
    Required(
        "TypeOfTransaction",
        "Type of Transaction is required",
    ),
    Pattern(
        "TypeOfTransaction",
        rf"^({'|'.join(TRANSACTION_TYPES)})$",
        "Type of Transaction must be Fixed, Adhoc or Replacement",
    ),
    *[Required(c.id, f"{c.label} is required") for c in TRANSACTION_CHECKPOINTS],
    # Fixed
    Required(
        "VehicleNo",
        "At least one vehicle must be selected",
        when=_is_fixed,
        depends_on=["TypeOfTransaction"],
    ),
    Check(["DriverID"], ["SelectedDrivers", "TypeOfTransaction"], _check_driver),
    # Adhoc / Replacement
    _adhoc_required("VehicleNumber", "Vehicle Number"),
    _adhoc_required("VendorName", "Vendor Name"),
    _adhoc_required("DriverName", "Driver Name"),
    _adhoc_required("DriverNumber", "Driver Number"),
    _digits("DriverNumber", 10, "Driver Number", when=_is_adhoc_or_replacement),
    _digits("VendorNumber", 10, "Vendor Number", when=_is_adhoc_or_replacement),
    _digits("DriverAadharNumber", 12, "Aadhar Number", when=_is_adhoc_or_replacement),
    Check(["ReplacementDriverNo"], ["ReplacementDriverName"], _check_replacement_driver),
    # odometer and money ranges
    Compare("OpeningKM", ">=", ZERO, "Opening KM cannot be negative"),
    Compare(
        "ClosingKM", ">", RuleRightField(field="OpeningKM"),
        "Closing KM must be greater than Opening KM",
    ),
    *[Compare(c, ">=", ZERO, f"{c} cannot be negative") for c in CHARGE_FIELDS],
    Compare("AdvancePaidAmount", ">=", ZERO, "Advance paid amount cannot be negative"),
    Compare("BalancePaidAmount", ">=", ZERO, "Balance paid amount cannot be negative"),
]

TRANSACTION_FORM = FormDefinition(
    form_type="transaction",
    resource="daily-vehicle-transactions",
    fields=FIELDS,
    derived=DERIVED,
    rules=RULES,
    checkpoints=TRANSACTION_CHECKPOINTS,
    autofills=[Autofill(("TypeOfTransaction",), _fill_advance_request_no)],
)
