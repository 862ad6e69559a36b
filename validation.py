"""
Input validation and formatting helpers.

Single-field validators return a ``CheckResult`` instead of raising. The
composite validators collect every field error into one list so a form can
show all problems at once.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from schemas import (
    ASSET_CATEGORIES,
    ASSET_STATUSES,
    DEPARTMENTS,
    EMAIL_DOMAINS,
    HUBS,
    LOCATION_STATUSES,
    LOCATION_TYPES,
    REQUEST_ITEM_CATEGORIES,
    REQUEST_PRIORITIES,
    REQUEST_URGENCIES,
    USER_ROLES,
)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^(\+27|0)[1-9][0-9]{8}$")
PHONE_STRIP_RE = re.compile(r"[\s\-()]")
PASSWORD_SYMBOL_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
ASSET_CODE_RE = re.compile(r"ASSET-(\d+)")
REQUEST_CODE_RE = re.compile(r"REQ-(\d{4})-(\d+)")

MAX_ASSET_VALUE = 10_000_000
EARLIEST_PURCHASE = date(2000, 1, 1)
ANNUAL_DEPRECIATION = 0.333
NBSP = "\u00a0"

LOCATION_CODES = {
    "pretoria": "PRT",
    "johannesburg": "JHB",
    "cape town": "CPT",
    "durban": "DBN",
    "bloemfontein": "BFN",
    "polokwane": "PLK",
    "tshwane": "TSH",
    "port elizabeth": "PE",
    "east london": "EL",
    "kimberley": "KIM",
    "galeshewe": "GLS",
    "upington": "UPN",
    "nelspruit": "NEL",
    "mbombela": "MBB",
    "soweto": "SWT",
    "tembisa": "TMB",
    "rustenburg": "RBT",
    "witbank": "WTB",
}
TYPE_PREFIXES = {"hq": "HQ", "hub": "HUB", "site": "ST", "branch": "BR"}


@dataclass
class CheckResult:
    is_valid: bool
    message: Optional[str] = None
    formatted: Optional[str] = None


@dataclass
class FormResult:
    is_valid: bool
    errors: List[str]
    cleaned: Optional[Dict[str, Any]] = None


# ==================== Single fields ====================

def validate_email(email: Optional[str]) -> CheckResult:
    if not email:
        return CheckResult(False, "Email is required")
    if not EMAIL_RE.match(email):
        return CheckResult(False, "Invalid email format")
    domain = email.split("@")[1].lower()
    if domain not in EMAIL_DOMAINS:
        allowed = " or @".join(EMAIL_DOMAINS)
        return CheckResult(False, f"Email must be from mLab domain (@{allowed})")
    return CheckResult(True, formatted=email.lower())


def validate_phone(phone: Optional[str]) -> CheckResult:
    """Validate a South African number and normalize it to +27XXXXXXXXX.

    ``message`` carries the spaced display form on success.
    """
    if not phone:
        return CheckResult(False, "Phone number is required")
    clean = PHONE_STRIP_RE.sub("", phone)
    if not PHONE_RE.match(clean):
        return CheckResult(
            False,
            "Invalid South African phone number. Use format: +27 82 123 4567 or 082 123 4567",
        )
    formatted = "+27" + clean[1:] if clean.startswith("0") else clean
    display = f"{formatted[:3]} {formatted[3:5]} {formatted[5:8]} {formatted[8:]}"
    return CheckResult(True, display, formatted)


def validate_password(password: Optional[str]) -> CheckResult:
    if not password:
        return CheckResult(False, "Password is required")
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if not PASSWORD_SYMBOL_RE.search(password):
        errors.append("Password must contain at least one special character")
    if errors:
        return CheckResult(False, ". ".join(errors))
    return CheckResult(True)


def _birth_date(digits: str) -> Optional[date]:
    yy, mm, dd = int(digits[0:2]), int(digits[2:4]), int(digits[4:6])
    for century in (2000, 1900):
        try:
            born = date(century + yy, mm, dd)
        except ValueError:
            continue
        if born <= date.today():
            return born
    return None


def luhn_valid(digits: str) -> bool:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        n = int(ch)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def validate_id_number(id_number: Optional[str]) -> CheckResult:
    """South African 13-digit identity number: YYMMDD SSSS C A Z."""
    if not id_number:
        return CheckResult(False, "ID number is required")
    digits = re.sub(r"\s", "", id_number)
    if len(digits) != 13 or not digits.isdigit():
        return CheckResult(False, "ID number must be exactly 13 digits")
    if _birth_date(digits) is None:
        return CheckResult(False, "ID number contains an invalid date of birth")
    if not luhn_valid(digits):
        return CheckResult(False, "ID number checksum is invalid")
    return CheckResult(True, formatted=digits)


# ==================== Currency ====================

def format_zar(amount: float) -> str:
    """Format as en-ZA rand, e.g. ``R 1 234,56``.

    Both the space after ``R`` and the thousands separators are U+00A0.
    """
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, cents = f"{abs(value):.2f}".split(".")
    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    return f"{sign}R{NBSP}{NBSP.join(groups)},{cents}"


def parse_zar(text: str) -> Optional[float]:
    if text is None:
        return None
    cleaned = text.strip().replace(NBSP, "").replace(" ", "")
    negative = cleaned.startswith("-")
    cleaned = cleaned.lstrip("-").lstrip("R").lstrip("-")
    if "," in cleaned:
        # en-ZA uses the comma as decimal separator
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return float(-value if negative else value)


# ==================== Codes ====================

def generate_asset_code(existing_codes: Iterable[Optional[str]] = ()) -> str:
    """Next ``ASSET-NNN`` after the highest numeric suffix in ``existing_codes``."""
    highest = 0
    for code in existing_codes:
        match = ASSET_CODE_RE.match(code or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"ASSET-{highest + 1:03d}"


def generate_request_code(year: int, existing_codes: Iterable[Optional[str]] = ()) -> str:
    """Next ``REQ-YYYY-NNN``; numbering restarts every year."""
    highest = 0
    for code in existing_codes:
        match = REQUEST_CODE_RE.match(code or "")
        if match and int(match.group(1)) == year:
            highest = max(highest, int(match.group(2)))
    return f"REQ-{year}-{highest + 1:03d}"


def generate_location_code(name: str, location_type: str, existing_codes: Iterable[Optional[str]] = ()) -> str:
    if not name or not location_type:
        return ""
    normalized = name.lower().strip()
    prefix = LOCATION_CODES.get(normalized)
    if not prefix:
        for key, code in LOCATION_CODES.items():
            if key in normalized:
                prefix = code
                break
    if not prefix:
        prefix = re.sub(r"[^A-Za-z]", "", name)[:3].upper() or "LOC"
    type_prefix = TYPE_PREFIXES.get(location_type.lower().strip(), "LOC")

    stem = f"{type_prefix}-{prefix}-"
    highest = 0
    for code in existing_codes:
        if code and code.startswith(stem):
            suffix = code[len(stem):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
    return f"{stem}{highest + 1:03d}"


def calculate_depreciation(purchase_date: date, value: float, today: Optional[date] = None) -> float:
    """Book value after straight-line depreciation of 33.3% a year."""
    today = today or date.today()
    if isinstance(purchase_date, datetime):
        purchase_date = purchase_date.date()
    months = max(0, (today.year - purchase_date.year) * 12 + (today.month - purchase_date.month))
    depreciated = value * (ANNUAL_DEPRECIATION / 12) * months
    return max(0.0, value - depreciated)


# ==================== Assets ====================

def _to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def _check_value(value: Any, errors: List[str]):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append("Value must be a number (ZAR)")
    elif value <= 0:
        errors.append("Value must be positive (ZAR)")
    elif value > MAX_ASSET_VALUE:
        errors.append("Value cannot exceed 10,000,000 ZAR")


def validate_create_asset(data: Dict[str, Any]) -> FormResult:
    errors: List[str] = []
    for field in ("name", "category", "location", "value", "purchase_date"):
        if data.get(field) in (None, ""):
            errors.append(f"{field} is required")

    name = data.get("name")
    if name and not 2 <= len(name) <= 100:
        errors.append("Asset name must be between 2 and 100 characters")
    if data.get("category") and data["category"] not in ASSET_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(ASSET_CATEGORIES)}")
    if data.get("location") and data["location"] not in HUBS:
        errors.append(f"Invalid location. Must be one of: {', '.join(HUBS)}")
    if data.get("status") and data["status"] not in ASSET_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(ASSET_STATUSES)}")
    if data.get("value") is not None:
        _check_value(data["value"], errors)

    if data.get("purchase_date"):
        purchased = _to_date(data["purchase_date"])
        if purchased is None:
            errors.append("Invalid purchase date")
        elif purchased > date.today():
            errors.append("Purchase date cannot be in the future")
        elif purchased < EARLIEST_PURCHASE:
            errors.append("Purchase date cannot be before 2000")

    if data.get("serial_number") and len(data["serial_number"]) > 50:
        errors.append("Serial number cannot exceed 50 characters")
    if data.get("manufacturer") and len(data["manufacturer"]) > 50:
        errors.append("Manufacturer name cannot exceed 50 characters")
    return FormResult(not errors, errors)


def validate_update_asset(data: Dict[str, Any]) -> FormResult:
    errors: List[str] = []
    if data.get("status") and data["status"] not in ASSET_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(ASSET_STATUSES)}")
    if data.get("location") and data["location"] not in HUBS:
        errors.append(f"Invalid location. Must be one of: {', '.join(HUBS)}")
    if data.get("category") and data["category"] not in ASSET_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(ASSET_CATEGORIES)}")
    if data.get("name") is not None and not 2 <= len(data["name"]) <= 100:
        errors.append("Asset name must be between 2 and 100 characters")
    if data.get("value") is not None:
        _check_value(data["value"], errors)
    if data.get("assigned_to") and len(data["assigned_to"]) > 100:
        errors.append("Invalid assigned user ID")
    return FormResult(not errors, errors)


# ==================== Users ====================

def _check_display_name(name: Optional[str], errors: List[str]):
    if not name or len(name.strip()) < 2:
        errors.append("Display name must be at least 2 characters")
    elif len(name) > 50:
        errors.append("Display name cannot exceed 50 characters")


def _check_user_choices(data: Dict[str, Any], errors: List[str]):
    if data.get("department") and data["department"] not in DEPARTMENTS:
        errors.append(f"Invalid department. Must be one of: {', '.join(DEPARTMENTS)}")
    if data.get("role") and data["role"] not in USER_ROLES:
        errors.append(f"Invalid role. Must be one of: {', '.join(USER_ROLES)}")


def validate_user_registration(data: Dict[str, Any], require_password: bool = True) -> FormResult:
    errors: List[str] = []
    cleaned = dict(data)

    email = validate_email(data.get("email"))
    if not email.is_valid:
        errors.append(email.message)
    else:
        cleaned["email"] = email.formatted

    phone = validate_phone(data.get("phone"))
    if not phone.is_valid:
        errors.append(phone.message)
    else:
        cleaned["phone"] = phone.formatted

    if require_password:
        password = validate_password(data.get("password"))
        if not password.is_valid:
            errors.append(password.message)

    _check_display_name(data.get("display_name"), errors)

    if not data.get("hub"):
        errors.append("Hub is required")
    elif data["hub"] not in HUBS:
        errors.append("Hub must be Tshwane, Polokwane, or Galeshewe")

    _check_user_choices(data, errors)
    if not data.get("role"):
        cleaned["role"] = "user"

    return FormResult(not errors, errors, cleaned if not errors else None)


def validate_user_update(data: Dict[str, Any]) -> FormResult:
    errors: List[str] = []
    cleaned = dict(data)

    if data.get("phone"):
        phone = validate_phone(data["phone"])
        if not phone.is_valid:
            errors.append(phone.message)
        else:
            cleaned["phone"] = phone.formatted
    if data.get("email"):
        email = validate_email(data["email"])
        if not email.is_valid:
            errors.append(email.message)
        else:
            cleaned["email"] = email.formatted
    if data.get("display_name") is not None:
        _check_display_name(data["display_name"], errors)
    if data.get("hub") and data["hub"] not in HUBS:
        errors.append("Hub must be Tshwane, Polokwane, or Galeshewe")
    _check_user_choices(data, errors)

    return FormResult(not errors, errors, cleaned if not errors else None)


# ==================== Locations ====================

def validate_location_form(data: Dict[str, Any]) -> FormResult:
    errors: List[str] = []
    if not (data.get("name") or "").strip():
        errors.append("Location name is required")
    if not (data.get("address") or "").strip():
        errors.append("Address is required")
    if not (data.get("contact_name") or "").strip():
        errors.append("Contact name is required")

    contact_email = (data.get("contact_email") or "").strip()
    if not contact_email:
        errors.append("Contact email is required")
    elif not EMAIL_RE.match(contact_email):
        errors.append("Invalid email format")

    if data.get("contact_phone"):
        phone = PHONE_STRIP_RE.sub("", data["contact_phone"])
        if not re.match(r"^\+?[1-9][\d]{0,15}$", phone) and not PHONE_RE.match(phone):
            errors.append("Invalid contact phone number")

    if data.get("type") not in LOCATION_TYPES:
        errors.append("Invalid location type")
    if data.get("status") not in LOCATION_STATUSES:
        errors.append("Invalid status")
    if (data.get("total_assets") or 0) < 0:
        errors.append("Total assets cannot be negative")
    if data.get("capacity") is not None and data["capacity"] < 0:
        errors.append("Capacity cannot be negative")
    return FormResult(not errors, errors)


def validate_bulk_locations(lines: Iterable[str]) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Parse CSV lines ``name,address,type,status,total_assets,region[,contact...]``.

    Returns the collected errors (prefixed with the line number) and the rows
    that passed.
    """
    errors: List[str] = []
    locations: List[Dict[str, Any]] = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 6:
            errors.append(f"Line {number}: Insufficient data. Expected at least 6 fields")
            continue
        parts += [""] * (10 - len(parts))
        name, address, loc_type, status, total, region, contact_name, contact_email, contact_phone, description = parts[:10]

        line_errors = []
        if not name:
            line_errors.append(f"Line {number}: Name is required")
        if not address:
            line_errors.append(f"Line {number}: Address is required")
        if contact_email and not EMAIL_RE.match(contact_email):
            line_errors.append(f"Line {number}: Invalid email format")
        if loc_type.lower() not in LOCATION_TYPES:
            line_errors.append(
                f"Line {number}: Invalid type \"{loc_type}\". Must be one of: {', '.join(LOCATION_TYPES)}"
            )
        if status.lower() not in LOCATION_STATUSES:
            line_errors.append(
                f"Line {number}: Invalid status \"{status}\". Must be one of: {', '.join(LOCATION_STATUSES)}"
            )
        if not total.isdigit():
            line_errors.append(f"Line {number}: Invalid total assets \"{total}\". Must be a positive number")

        if line_errors:
            errors.extend(line_errors)
            continue
        locations.append({
            "name": name,
            "address": address,
            "type": loc_type.lower(),
            "status": status.lower(),
            "total_assets": int(total),
            "region": region or "Unknown",
            "contact_name": contact_name or "Unknown",
            "contact_email": contact_email or "unknown@mlab.co.za",
            "contact_phone": contact_phone,
            "description": description,
        })
    return errors, locations


# ==================== Requests ====================

def _check_request_items(items: List[Dict[str, Any]], errors: List[str]):
    for number, item in enumerate(items, start=1):
        if not (item.get("asset_type") or "").strip():
            errors.append(f"Item {number}: asset type is required")
        if item.get("category", "hardware") not in REQUEST_ITEM_CATEGORIES:
            errors.append(f"Item {number}: Invalid category. Must be one of: {', '.join(REQUEST_ITEM_CATEGORIES)}")
        quantity = item.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            errors.append(f"Item {number}: quantity must be at least 1")
        if not (item.get("purpose") or "").strip():
            errors.append(f"Item {number}: purpose is required")
        if item.get("urgency", "normal") not in REQUEST_URGENCIES:
            errors.append(f"Item {number}: urgency must be normal or urgent")


def validate_request_form(data: Dict[str, Any]) -> FormResult:
    """A request either lists the items wanted or names one asset to assign."""
    errors: List[str] = []
    items = data.get("items") or []
    if not items and not data.get("asset_ref"):
        errors.append("Add at least one item or choose an asset")
    _check_request_items(items, errors)
    if data.get("priority", "medium") not in REQUEST_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(REQUEST_PRIORITIES)}")
    if data.get("needed_by") is not None and _to_date(data["needed_by"]) is None:
        errors.append("Invalid needed-by date")
    if data.get("notes") and len(data["notes"]) > 500:
        errors.append("Notes cannot exceed 500 characters")
    return FormResult(not errors, errors)


def validate_request_update(data: Dict[str, Any]) -> FormResult:
    errors: List[str] = []
    if data.get("items") is not None:
        if not data["items"]:
            errors.append("Add at least one item")
        _check_request_items(data["items"], errors)
    if data.get("priority") is not None and data["priority"] not in REQUEST_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(REQUEST_PRIORITIES)}")
    if data.get("notes") and len(data["notes"]) > 500:
        errors.append("Notes cannot exceed 500 characters")
    return FormResult(not errors, errors)
