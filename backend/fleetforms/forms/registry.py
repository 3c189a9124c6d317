from typing import Dict

from fleetforms.forms.base import FormDefinition
from fleetforms.forms.customer import CUSTOMER_FORM
from fleetforms.forms.transaction import TRANSACTION_FORM

FORM_DEFINITIONS: Dict[str, FormDefinition] = {
    form.form_type: form for form in (TRANSACTION_FORM, CUSTOMER_FORM)
}


def get_definition(form_type: str) -> FormDefinition:
    try:
        return FORM_DEFINITIONS[form_type]
    except KeyError:
        raise KeyError(f"Unknown form type: {form_type}") from None
