# wabot/templates.py
import re
from typing import Iterable, Optional

# -------------------------------
# Bot replies
# -------------------------------

# 1️⃣ Menu (greeting / restart)
MENU = (
    "¡Hola{nombre}! 👋 Bienvenido(a) a nuestra óptica. ¿En qué te podemos ayudar?\n\n"
    "1️⃣ Examen visual\n"
    "2️⃣ Lentes\n"
    "3️⃣ Monturas\n"
    "4️⃣ Promociones\n"
    "9️⃣ Hablar con un asesor\n\n"
    "Responde con el número de la opción."
)

# 2️⃣ Numbered topics
TOPIC_REPLIES = {
    "examen": (
        "👁️ Nuestro examen visual es realizado por optómetras certificados y dura unos 30 minutos. "
        "¿Quieres agendar una cita? Escríbenos el día y la hora, por ejemplo: \"mañana a las 3pm\"."
    ),
    "lentes": (
        "👓 Trabajamos lentes monofocales, bifocales y progresivos, con filtro azul, fotocromáticos y antirreflejo. "
        "Si tienes tu fórmula, envíanos una foto y te cotizamos."
    ),
    "monturas": (
        "🕶️ Tenemos monturas para todos los estilos y presupuestos: metálicas, de acetato y deportivas. "
        "Te esperamos en la tienda para que te las pruebes."
    ),
    "promociones": (
        "🎉 Este mes tenemos descuentos especiales en lentes y monturas seleccionadas. "
        "Pregúntanos por la promoción vigente."
    ),
}

# 3️⃣ Handoff
HANDOFF = "Con gusto 🙌 Un asesor te atenderá en breve. Gracias por tu paciencia."

# 4️⃣ Appointment dialogue
ASK_TIME = "Perfecto, anoto el {fecha} 📅 ¿A qué hora te gustaría venir? Atendemos de {apertura} a {cierre}."
ASK_DATE = "Perfecto, a las {hora} ⏰ ¿Qué día te gustaría venir? Por ejemplo: \"mañana\", \"el viernes\" o \"15 de marzo\"."
ASK_DATETIME = (
    "¡Claro! Con gusto te agendamos una cita 📅 ¿Qué día y a qué hora te gustaría venir?\n"
    "Por ejemplo: \"mañana a las 3pm\" o \"el viernes a las 10:30am\"."
)
CONFIRMATION = (
    "✅ ¡Listo{nombre}! Tu cita quedó agendada para el {fecha} a las {hora}. "
    "Te esperamos. Si necesitas cambiarla, escríbenos por aquí."
)
ALTERNATIVES = (
    "Lo siento, el {fecha} a las {hora} no está disponible 😕 Estos horarios sí lo están:\n"
    "{opciones}\n\n"
    "Responde con el número de la opción que prefieras."
)
NOT_AVAILABLE = (
    "Lo siento, ese horario no está disponible 😕 ¿Podrías indicarnos otro día u hora? "
    "Atendemos de lunes a sábado en horario de tienda."
)

# 5️⃣ Reminders (cron)
REMINDER = "Hola{nombre}, recordatorio de tu cita el {fecha} a las {hora}. ¿Confirmas tu asistencia? 📅"

# 6️⃣ System notes (timeline only, never sent)
NOTE_REACTIVATED = "🤖 Bot reactivado automáticamente tras {horas} h sin intervención de un asesor."
NOTE_BOOKED = "📅 Cita agendada por el bot: {fecha} a las {hora} ({tipo})."

_NOMBRE_PATTERN = re.compile(r"\{nombre\}", re.IGNORECASE)


# -------------------------------
# Helpers
# -------------------------------
def _first_name(full_name: Optional[str]) -> str:
    if not full_name:
        return ""
    return full_name.strip().split(" ")[0]


def _greeting_name(full_name: Optional[str]) -> str:
    first = _first_name(full_name)
    return f" {first}" if first else ""


def personalize(template: str, full_name: Optional[str]) -> str:
    """
    Replace every {nombre} placeholder (any casing) with the lead's name.

    Leads without a name keep the literal placeholder; the campaign author
    is expected to write templates that read well either way.
    """
    if not full_name or not full_name.strip():
        return template
    name = full_name.strip()
    return _NOMBRE_PATTERN.sub(lambda _m: name, template)


# -------------------------------
# Public API
# -------------------------------
def menu(full_name: Optional[str] = None) -> str:
    return MENU.format(nombre=_greeting_name(full_name))


def topic_reply(topic: str) -> str:
    return TOPIC_REPLIES[topic]


def handoff() -> str:
    return HANDOFF


def ask_time(date_text: str, start_hour: int = 9, end_hour: int = 18) -> str:
    return ASK_TIME.format(fecha=date_text, apertura=f"{start_hour}:00", cierre=f"{end_hour}:00")


def ask_date(time_text: str) -> str:
    return ASK_DATE.format(hora=time_text)


def ask_datetime() -> str:
    return ASK_DATETIME


def confirmation(date_text: str, time_text: str, full_name: Optional[str] = None) -> str:
    return CONFIRMATION.format(nombre=_greeting_name(full_name), fecha=date_text, hora=time_text)


def alternatives(date_text: str, time_text: str, option_texts: Iterable[str]) -> str:
    lines = "\n".join(f"{i}. {text}" for i, text in enumerate(option_texts, start=1))
    return ALTERNATIVES.format(fecha=date_text, hora=time_text, opciones=lines)


def not_available() -> str:
    return NOT_AVAILABLE


def reminder(date_text: str, time_text: str, full_name: Optional[str] = None) -> str:
    return REMINDER.format(nombre=_greeting_name(full_name), fecha=date_text, hora=time_text)


def reactivation_note(hours: float) -> str:
    return NOTE_REACTIVATED.format(horas=f"{hours:g}")


def booking_note(date_text: str, time_text: str, appointment_type: str) -> str:
    return NOTE_BOOKED.format(fecha=date_text, hora=time_text, tipo=appointment_type)
