"""Lookup tables for alert wording, units and remediation advice.

Everything parameter-specific lives here, keyed by the closed ``Parameter``
enum. Parameters without an entry fall through to a generic default, so a
new sensor can be alerted on before it has bespoke wording.
"""

import random
from dataclasses import dataclass

from pondwatch.alerts.schemas import Direction, Parameter, Threshold


@dataclass(frozen=True)
class ParameterProfile:
    """Static metadata about a sensor parameter."""

    display_name: str
    unit: str
    decimals: int
    category: str
    weight: int
    confidence: float


DEFAULT_PROFILE = ParameterProfile(
    display_name="",
    unit="",
    decimals=2,
    category="physical",
    weight=0,
    confidence=0.80,
)

PROFILES: dict[Parameter, ParameterProfile] = {
    Parameter.PH: ParameterProfile("pH Level", "", 2, "chemical", 20, 0.95),
    Parameter.TEMPERATURE: ParameterProfile("Water Temperature", "°C", 1, "physical", 15, 0.90),
    Parameter.TURBIDITY: ParameterProfile("Turbidity", "NTU", 1, "physical", 10, 0.85),
    Parameter.SALINITY: ParameterProfile("Salinity", "ppt", 1, "chemical", 5, 0.90),
    Parameter.TDS: ParameterProfile("Total Dissolved Solids", "mg/L", 0, "chemical", 5, 0.80),
    Parameter.HUMIDITY: ParameterProfile("Device Humidity", "%", 1, "device", 12, 0.80),
    Parameter.DEVICE_TEMPERATURE: ParameterProfile("Device Temperature", "°C", 1, "device", 18, 0.80),
    Parameter.RAIN: ParameterProfile("Rain Sensor", "", 0, "weather", 0, 0.90),
}


def profile_for(parameter: str) -> ParameterProfile:
    known = Parameter.from_name(parameter)
    if known is None:
        return DEFAULT_PROFILE
    return PROFILES.get(known, DEFAULT_PROFILE)


def display_name(parameter: str) -> str:
    name = profile_for(parameter).display_name
    return name or parameter[:1].upper() + parameter[1:]


RAIN_STATUS: dict[int, str] = {
    0: "No Rain",
    1: "Raining",
    2: "Heavy Rain",
}

RAIN_MESSAGES: dict[int, str] = {
    0: "No precipitation detected. Water parameters are stable.",
    1: (
        "Light to moderate rain detected. Monitor water parameters for "
        "potential changes in turbidity and pH."
    ),
    2: (
        "Heavy rain detected. Increased monitoring recommended as runoff "
        "may affect water quality parameters."
    ),
}

RAIN_RECOMMENDATIONS: dict[int, list[str]] = {
    1: [
        "Watch turbidity and pH for runoff effects over the next few hours",
        "Check pond overflow and drainage channels",
    ],
    2: [
        "Increase monitoring frequency until the rain stops",
        "Check overflow outlets and bund walls for erosion",
        "Expect turbidity to rise and pH to drop from runoff",
        "Reduce feeding until water parameters stabilise",
    ],
}


def rain_code(value: float) -> int:
    return int(value)


def rain_status_text(value: float) -> str:
    code = rain_code(value)
    return RAIN_STATUS.get(code, f"Unknown ({code})")


def format_value(parameter: str, value: float) -> str:
    """Render a value with its unit and precision, e.g. ``28.4°C`` or ``75.0 NTU``."""
    known = Parameter.from_name(parameter)
    if known is Parameter.RAIN:
        return rain_status_text(value)
    profile = profile_for(parameter)
    text = f"{value:.{profile.decimals}f}"
    if not profile.unit:
        return text
    if profile.unit in ("°C", "%"):
        return f"{text}{profile.unit}"
    return f"{text} {profile.unit}"


# Title phrasings keyed by parameter -> direction -> level. Each entry lists
# equivalent phrasings; the first is used unless randomization is enabled.
TITLES: dict[Parameter, dict[str, dict[str, list[str]]]] = {
    Parameter.PH: {
        "high": {
            "critical": ["pH Too High", "pH Dangerously High"],
            "warning": ["pH Rising", "pH Above Safe Range"],
        },
        "low": {
            "critical": ["pH Too Low", "pH Dangerously Low"],
            "warning": ["pH Falling", "pH Below Safe Range"],
        },
    },
    Parameter.TEMPERATURE: {
        "high": {
            "critical": ["Temperature Critical", "Water Overheating"],
            "warning": ["Temperature High", "Water Warming"],
        },
        "low": {
            "critical": ["Temperature Too Low", "Water Dangerously Cold"],
            "warning": ["Temperature Low", "Water Cooling"],
        },
    },
    Parameter.TURBIDITY: {
        "high": {
            "critical": ["Turbidity Critical", "Water Very Murky"],
            "warning": ["Water Cloudy", "Turbidity Rising"],
        },
        "low": {
            "critical": ["Turbidity Too Low"],
            "warning": ["Turbidity Low"],
        },
    },
    Parameter.SALINITY: {
        "high": {
            "critical": ["Salinity Too High"],
            "warning": ["Salinity Rising"],
        },
        "low": {
            "critical": ["Salinity Too Low"],
            "warning": ["Salinity Falling"],
        },
    },
    Parameter.TDS: {
        "high": {
            "critical": ["Dissolved Solids Critical"],
            "warning": ["Dissolved Solids High"],
        },
    },
    Parameter.HUMIDITY: {
        "high": {
            "critical": ["Device Humidity Critical"],
            "warning": ["Device Humidity High"],
        },
        "low": {
            "critical": ["Device Humidity Too Low"],
            "warning": ["Device Humidity Low"],
        },
    },
    Parameter.DEVICE_TEMPERATURE: {
        "high": {
            "critical": ["Device Overheating"],
            "warning": ["Device Temperature High"],
        },
        "low": {
            "critical": ["Device Temperature Too Low"],
            "warning": ["Device Temperature Low"],
        },
    },
}

LEVEL_FLAGS: dict[str, str] = {
    "critical": "🚨",
    "warning": "⚠️",
}


def alert_title(
    parameter: str,
    value: float,
    level: str,
    direction: Direction,
    rng: random.Random | None = None,
) -> str:
    """Pick an actionable title such as ``🚨 pH Too High - 9.50``."""
    flag = LEVEL_FLAGS.get(level, "")
    formatted = format_value(parameter, value)
    known = Parameter.from_name(parameter)
    phrasings = TITLES.get(known, {}).get(direction, {}).get(level) if known else None

    if phrasings:
        phrase = rng.choice(phrasings) if rng is not None else phrasings[0]
    else:
        phrase = f"{display_name(parameter)} {level.capitalize()}"
    return f"{flag} {phrase} - {formatted}".strip()


def alert_message(
    parameter: str,
    value: float,
    level: str,
    threshold: Threshold | None,
) -> str:
    """Describe the reading and the safe range it left."""
    name = display_name(parameter)
    formatted = format_value(parameter, value)

    range_text = ""
    if threshold is not None:
        if threshold.min is not None and threshold.max is not None:
            range_text = f" (Safe range: {threshold.min:g} - {threshold.max:g})"
        elif threshold.max is not None:
            range_text = f" (Safe max: {threshold.max:g})"
        elif threshold.min is not None:
            range_text = f" (Safe min: {threshold.min:g})"

    return f"{name} reading of {formatted} is {level}{range_text}"


def rain_title(value: float) -> str:
    return f"Weather Update: {rain_status_text(value)} Detected"


def rain_message(value: float) -> str:
    code = rain_code(value)
    return RAIN_MESSAGES.get(
        code,
        f"Rain sensor status: {rain_status_text(value)}. Monitor water parameters closely.",
    )


def _ph_recommendations(critical: bool, direction: Direction, deviation: float) -> list[str]:
    if direction == "high":
        if not critical:
            return [
                "Add pH reducer (sodium bisulfate) gradually",
                "Check CO2 injection and diffuser for proper aeration",
                "Monitor pH trend over next 4-6 hours",
                "Consider water change to stabilize alkalinity",
            ]
        if deviation > 20:
            return [
                "URGENT: Add pH reducer immediately (sodium bisulfate or CO2)",
                "Stop all feeding and reduce aeration temporarily",
                "Test total alkalinity - may need to reduce carbonate hardness",
                "Monitor for fish stress and prepare emergency water change",
            ]
        if deviation > 10:
            return [
                "Add pH reducer (sodium bisulfate) gradually over 1-2 hours",
                "Reduce feeding by 50% and monitor fish behavior",
                "Check CO2 injection system if using pressurized CO2",
                "Test alkalinity levels and adjust buffer if needed",
            ]
        return [
            "Add pH reducer (sodium bisulfate) slowly",
            "Verify CO2 injection system is functioning properly",
            "Monitor rate of pH change - avoid rapid drops",
        ]
    if direction == "low":
        if not critical:
            return [
                "Add pH increaser (baking soda) gradually",
                "Check for excessive CO2 or low alkalinity",
                "Monitor pH stability over several hours",
                "Consider adding crushed coral or aragonite to substrate",
            ]
        if deviation > 20:
            return [
                "URGENT: Add pH increaser immediately (baking soda or crushed coral)",
                "Increase aeration to release CO2 from water",
                "Test for ammonia or nitrite toxicity",
                "Prepare emergency water change with buffered water",
            ]
        if deviation > 10:
            return [
                "Add pH increaser (baking soda) gradually over 1-2 hours",
                "Increase surface agitation and air flow",
                "Test alkalinity - add buffer if low",
                "Monitor for rapid pH swings indicating system instability",
            ]
        return [
            "Add pH increaser (baking soda) slowly",
            "Increase aeration and water movement",
            "Test total alkalinity and adjust if below 100ppm",
        ]
    return ["Monitor pH levels and maintain stability"]


def _temperature_recommendations(critical: bool, direction: Direction, deviation: float) -> list[str]:
    if direction == "high":
        if critical:
            return [
                "Activate cooling system immediately (chillers/fans)",
                "Increase aeration to improve oxygen levels",
                "Reduce feeding by 50-70% to lower metabolic heat",
                "Test dissolved oxygen levels - add oxygen if low",
            ]
        return [
            "Check cooling equipment and water flow",
            "Increase water circulation and surface agitation",
            "Reduce feeding schedule temporarily",
            "Ensure adequate shade over the pond",
        ]
    if direction == "low":
        if critical:
            return [
                "Activate heating system immediately",
                "Check heater functionality and thermostat settings",
                "Monitor fish for signs of temperature stress",
                "Gradually warm water using heater or warm water additions",
            ]
        return [
            "Check and adjust heater settings",
            "Reduce heat loss by covering the pond overnight",
            "Monitor temperature stability over time",
        ]
    return ["Maintain stable temperature conditions"]


def _turbidity_recommendations(critical: bool, direction: Direction, deviation: float) -> list[str]:
    if direction == "high":
        if critical or deviation > 50:
            return [
                "Backwash or clean filters immediately",
                "Inspect for sediment sources or recent disturbances",
                "Reduce water flow to allow settling if appropriate",
                "Test filter pressure and media condition",
            ]
        if deviation > 10:
            return [
                "Schedule filter cleaning within 24 hours",
                "Monitor turbidity trend and particulate sources",
                "Inspect intake screens and pre-filters",
            ]
        return [
            "Monitor turbidity levels closely",
            "Check for seasonal or weather-related causes",
            "Verify filtration system performance",
        ]
    if direction == "low":
        return [
            "Low turbidity noted - generally beneficial",
            "Monitor for system changes that might affect water clarity",
        ]
    return ["Monitor water clarity and filtration performance"]


def _salinity_recommendations(critical: bool, direction: Direction, deviation: float) -> list[str]:
    if direction == "high":
        if critical:
            return [
                "Add fresh water gradually to reduce salinity",
                "Check evaporation rates and top-off procedures",
                "Monitor for osmotic stress in stock",
            ]
        return [
            "Reduce salt additions or increase water changes",
            "Monitor evaporation rates vs. makeup water",
            "Verify salinity meter calibration",
        ]
    if direction == "low":
        if critical:
            return [
                "Add salt or brine solution to increase salinity",
                "Check for excessive freshwater dilution",
                "Monitor for osmotic stress during adjustment",
            ]
        return [
            "Adjust salt dosing to maintain target salinity",
            "Check for leaks or excessive water changes",
        ]
    return ["Monitor salinity levels and maintain stability"]


def _tds_recommendations(critical: bool, direction: Direction, deviation: float) -> list[str]:
    if direction == "high":
        if critical:
            return [
                "Perform water change to reduce total dissolved solids",
                "Check for ion buildup from evaporation",
                "Verify filtration performance",
            ]
        return [
            "Increase water change frequency",
            "Monitor TDS trend and identify source of buildup",
        ]
    if direction == "low":
        return [
            "Low TDS noted - may indicate excessive dilution",
            "Verify source water quality",
        ]
    return ["Monitor TDS levels and water quality parameters"]


def _device_recommendations(critical: bool, direction: Direction, deviation: float) -> list[str]:
    steps = [
        "Inspect the sensor enclosure for ventilation and moisture ingress",
        "Check the device power supply and cabling",
    ]
    if critical:
        steps.insert(0, "Shade or relocate the monitoring unit to protect electronics")
    return steps


RECOMMENDERS = {
    Parameter.PH: _ph_recommendations,
    Parameter.TEMPERATURE: _temperature_recommendations,
    Parameter.TURBIDITY: _turbidity_recommendations,
    Parameter.SALINITY: _salinity_recommendations,
    Parameter.TDS: _tds_recommendations,
    Parameter.HUMIDITY: _device_recommendations,
    Parameter.DEVICE_TEMPERATURE: _device_recommendations,
}


def recommendations(
    parameter: str,
    level: str,
    direction: Direction,
    deviation: float,
) -> list[str]:
    """Remediation steps for a parameter, direction and deviation percentage."""
    known = Parameter.from_name(parameter)
    recommender = RECOMMENDERS.get(known) if known else None
    if recommender is not None:
        return recommender(level == "critical", direction, deviation)

    name = display_name(parameter)
    return [
        f"{level.capitalize()} {name} levels detected",
        f"Monitor {name.lower()} levels closely",
        f"Check equipment and processes related to {name.lower()}",
        "Document readings and trends for analysis",
    ]


def status_line(parameter: str, value: float, severity: str, alert_level: str) -> str:
    """One-line summary, e.g. ``Critical: Device Temperature is 58.0°C (critical)``."""
    severity_text = "Critical" if severity == "high" else "Warning"
    return (
        f"{severity_text}: {display_name(parameter)} is "
        f"{format_value(parameter, value)} ({alert_level})"
    )
