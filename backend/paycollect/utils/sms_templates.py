# utils/sms_templates.py
SMS_TEMPLATES = {
    # Link SMS sent from the payment links list / batch send
    "balance_due": (
        "{clinic}: Hi {first_name}, you have a ${amount} balance due. "
        "Pay here: {link}. Questions? Call {clinic_phone}. Thank you!"
    ),

    # Ad-hoc number typed in by staff, or per-client batch
    "outstanding": (
        "Hi {name}, you have an outstanding balance of ${amount}. "
        "Please make your payment here: {link}\n\nReply STOP to opt out."
    ),
}


def render_sms(key: str, **context) -> str:
    return SMS_TEMPLATES[key].format(**context)
