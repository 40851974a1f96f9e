"""
Access Messages

Human-readable access notes shown next to every referenced document, in
English, German and Dutch. The note depends on the content type, whether
the user is entitled to the document, the event date and the user's
membership tier and add-on discount. Pure derivation; the entitlement
flag is looked up elsewhere.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from .searcher import SearchResult
from .user_context import DiscountType, UserContext

MEMBERSHIP_TYPES = ("READ", "TUTORIAL", "FSLE", "COURSE")
EVENT_TYPES = ("RHEINGOLD", "CAMP", "FLEX_CAMP")
RECORDING_TYPE = "RHEINGOLD"

RECORDING_DAYS = 180


class AccessState(str, Enum):
    GRANTED = "granted"
    RESTRICTED = "restricted"

    @classmethod
    def of(cls, accessible: bool) -> "AccessState":
        return cls.GRANTED if accessible else cls.RESTRICTED


@dataclass(frozen=True)
class LocalizedText:
    en: str = ""
    de: str = ""
    nl: str = ""

    def get(self, code: str) -> str:
        return getattr(self, code, "") or ""

    def to_dict(self) -> Dict[str, str]:
        return {"en": self.en, "de": self.de, "nl": self.nl}


UNDETERMINED = LocalizedText(
    en="ℹ️ Access details for this content could not be determined from your current profile.",
    de="ℹ️ Zugriffshinweise zu diesen Inhalten konnten anhand Ihres Profils nicht bestimmt werden.",
    nl="ℹ️ Toegangsdetails voor deze content konden niet op basis van je profiel worden bepaald.",
)

NOT_IN_MEMBERSHIP = LocalizedText(
    en="⚠️ This content is not available with your current membership.\n"
       "Upgrade to Fullstack or Elevate to unlock full access.",
    de="⚠️ Diese Inhalte sind mit Ihrer aktuellen Mitgliedschaft nicht verfügbar.\n"
       "Upgraden Sie auf Fullstack oder Elevate, um vollen Zugriff zu erhalten.",
    nl="⚠️ Deze content is niet beschikbaar met het huidige lidmaatschap.\n"
       "Upgrade naar Fullstack of Elevate om volledige toegang te krijgen.",
)

BASIC_DISCOUNT = LocalizedText(
    en="As a Basic user, you can purchase at full price.\n"
       "Consider upgrading to a Fullstack membership (for individuals or teams up to 15) "
       "or Elevate for enterprises to save up to 25%.",
    de="Als Basic-Mitglied können Sie zum regulären Preis buchen.\n"
       "Erwägen Sie ein Upgrade auf eine Fullstack-Mitgliedschaft (für Einzelpersonen oder Teams bis 15) "
       "oder auf Elevate für Unternehmen, um bis zu 25% zu sparen.",
    nl="Als Basic-lid kun je tegen de volle prijs boeken.\n"
       "Overweeg een upgrade naar een Fullstack-lidmaatschap (voor individuen of teams tot 15) "
       "of naar Elevate voor organisaties om tot 25% te besparen.",
)

FULLSTACK_MEMBER_DISCOUNT = LocalizedText(
    en="As a Fullstack user, you're eligible for a member discount.\n"
       "Use your Fullstack ID at checkout on the event website to redeem.",
    de="Als Fullstack-Mitglied sind Sie für einen Mitgliederrabatt berechtigt.\n"
       "Geben Sie Ihre Fullstack-ID beim Checkout auf der Event-Seite ein.",
    nl="Als Fullstack-lid kom je in aanmerking voor ledenkorting.\n"
       "Gebruik je Fullstack-ID bij het afrekenen op de eventsite.",
)


def _membership_message(accessible: bool, tier: str) -> LocalizedText:
    if not accessible:
        return NOT_IN_MEMBERSHIP
    return LocalizedText(
        en=f"✅ This content is included with your {tier} membership.",
        de=f"✅ Diese Inhalte sind in Ihrer {tier}-Mitgliedschaft enthalten.",
        nl=f"✅ Deze content is inbegrepen in het {tier}-lidmaatschap.",
    )


def discount_message(user_context: UserContext) -> LocalizedText:
    """Booking hint for an event add-on the user has not bought."""
    amount = user_context.add_on_discount_amount
    platform = user_context.platform

    if user_context.access_tier == "elevate":
        if amount is None:
            return LocalizedText(
                en=f"As an Elevate member, your discount is applied automatically when booking via "
                   f"your Elevate dashboard here on {platform}. An additional 3% applies if you use "
                   f"a prepayment method.",
                de=f"Als Elevate-Mitglied wird Ihr Rabatt automatisch angewendet, wenn Sie über das "
                   f"interne Beschaffungs-Dashboard auf {platform} buchen. Zusätzlich werden 3% "
                   f"gewährt, wenn die Zahlung per Vorauszahlung erfolgt.",
                nl=f"Als Elevate-lid wordt je korting automatisch toegepast wanneer je boekt via het "
                   f"interne inkoopdashboard op {platform}. Bij betaling via vooruitbetaling geldt "
                   f"een extra 3%.",
            )
        return LocalizedText(
            en=f"As an Elevate member, your discount of {amount}% is applied automatically when booking "
               f"via your Elevate dashboard here on {platform}. An additional 3% applies if you use a "
               f"prepayment method.",
            de=f"Als Elevate-Mitglied wird Ihr Rabatt von {amount}% automatisch angewendet, wenn Sie "
               f"über das interne Beschaffungs-Dashboard auf {platform} buchen. Zusätzlich werden 3% "
               f"gewährt, wenn die Zahlung per Vorauszahlung erfolgt.",
            nl=f"Als Elevate-lid wordt je korting van {amount}% automatisch toegepast wanneer je boekt "
               f"via het interne inkoopdashboard op {platform}. Bij betaling via vooruitbetaling geldt "
               f"een extra 3%.",
        )

    if user_context.access_tier == "fullstack":
        if user_context.add_on_discount_type is not DiscountType.FIXED or amount is None:
            return FULLSTACK_MEMBER_DISCOUNT
        price = f"{user_context.currency}{amount}"
        return LocalizedText(
            en=f"As a Fullstack user, you're eligible for a {price} discount.\n"
               f"Use your Fullstack ID at checkout on the event website to redeem.",
            de=f"Als Fullstack-Mitglied erhalten Sie einen Rabatt von {price}.\n"
               f"Geben Sie Ihre Fullstack-ID beim Checkout auf der Event-Seite ein.",
            nl=f"Als Fullstack-lid ontvang je {price} korting.\n"
               f"Gebruik je Fullstack-ID bij het afrekenen op de eventsite.",
        )

    return BASIC_DISCOUNT


def _booked_event_message(result: SearchResult, now: datetime) -> LocalizedText:
    name = result.parent_name
    start = result.sort_date

    if start is not None and start >= now:
        return LocalizedText(
            en=f"✅ You've successfully booked this talk of {name}. We can't wait to welcome you at the event!",
            de=f"✅ Sie haben diesen Vortrag von {name} erfolgreich gebucht. Wir freuen uns darauf, "
               f"Sie beim Event zu begrüßen!",
            nl=f"✅ Je hebt deze talk van {name} succesvol geboekt. We kijken ernaar uit je op het "
               f"event te verwelkomen!",
        )

    if result.content_type != RECORDING_TYPE:
        return LocalizedText(
            en=f"✨ We hope you enjoyed {name}! You can still view the slides, text materials, and "
               f"download your certificate anytime.",
            de=f"✨ Wir hoffen, {name} hat Ihnen gefallen! Sie können die Folien, Textmaterialien und "
               f"Ihr Zertifikat weiterhin jederzeit einsehen.",
            nl=f"✨ We hopen dat je {name} leuk vond! Je kunt de slides, het tekstmateriaal en je "
               f"certificaat op elk moment blijven bekijken.",
        )

    # undated talks count as past and out of the recording window
    recordings_until = start + timedelta(days=RECORDING_DAYS) if start is not None else None
    if recordings_until is not None and now <= recordings_until:
        until = recordings_until.strftime("%Y-%m-%d")
        return LocalizedText(
            en=f"✅ You still have access to the recordings for this talk of {name} until {until}. "
               f"Unfortunately, recordings are not available for workshops, but you can still access "
               f"the slides and your certificate. Dive back in anytime!",
            de=f"✅ Sie haben weiterhin Zugriff auf die Aufzeichnungen dieses Vortrags von {name} bis "
               f"zum {until}. Für Workshops stehen leider keine Aufzeichnungen zur Verfügung, aber "
               f"Folien und Ihr Zertifikat sind weiterhin abrufbar.",
            nl=f"✅ Je hebt nog toegang tot de opnames van deze talk van {name} tot en met {until}. "
               f"Voor workshops zijn er helaas geen opnames beschikbaar, maar de slides en je "
               f"certificaat blijven beschikbaar.",
        )

    return LocalizedText(
        en=f"ℹ️ This talk of {name} was part of a past event. Recordings are no longer available, "
           f"but you can still access the slides and your certificate.",
        de=f"ℹ️ Dieser Vortrag von {name} war Teil einer vergangenen Veranstaltung. Aufzeichnungen "
           f"sind nicht mehr verfügbar, Folien und Ihr Zertifikat bleiben abrufbar.",
        nl=f"ℹ️ Deze talk van {name} maakte deel uit van een eerder event. Opnames zijn niet langer "
           f"beschikbaar, maar de slides en je certificaat blijven toegankelijk.",
    )


def _unbooked_event_message(result: SearchResult, user_context: UserContext, now: datetime) -> LocalizedText:
    name = result.parent_name
    if result.sort_date is not None and result.sort_date >= now:
        hint = discount_message(user_context)
        return LocalizedText(
            en=f"⚠️ This talk of {name} is a premium add-on. Purchase separately to participate. {hint.en}",
            de=f"⚠️ Dieser Vortrag von {name} ist ein Premium-Add-on. Buchen Sie separat, um "
               f"teilzunehmen. {hint.de}",
            nl=f"⚠️ Deze talk van {name} is een premium add-on. Boek apart om deel te nemen. {hint.nl}",
        )
    return LocalizedText(
        en=f"ℹ️ This talk of {name} was part of a past event. Booking is no longer available, but you "
           f"can discover the current edition right here on the platform.",
        de=f"ℹ️ Dieser Vortrag von {name} war Teil einer vergangenen Veranstaltung. Eine Buchung ist "
           f"nicht mehr möglich; entdecken Sie stattdessen die aktuelle Ausgabe direkt hier auf der "
           f"Plattform.",
        nl=f"ℹ️ Deze talk van {name} maakte deel uit van een eerder event. Boeken is niet meer "
           f"mogelijk, maar je kunt de huidige editie hier op het platform ontdekken.",
    )


def access_message(
    result: SearchResult,
    accessible: bool,
    user_context: UserContext,
    now: Optional[datetime] = None,
) -> LocalizedText:
    """
    Access note for one document.

    Args:
        result: Any chunk of the document (content type, date, parent name)
        accessible: Entitlement flag for the requesting user
        user_context: Tier, discount and platform of the requesting user
        now: Reference time, defaults to the current UTC time

    Returns:
        The note in en/de/nl
    """
    now = now or datetime.now(timezone.utc)
    if result.content_type in MEMBERSHIP_TYPES:
        return _membership_message(accessible, user_context.access_tier or "none")
    if result.content_type in EVENT_TYPES:
        if accessible:
            return _booked_event_message(result, now)
        return _unbooked_event_message(result, user_context, now)
    return UNDETERMINED
