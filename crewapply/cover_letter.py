"""Cover letters: profile template, optional Groq draft, or a fixed default."""
from __future__ import annotations

from typing import Callable

from crewapply.config import get_env
from crewapply.log import get_logger
from crewapply.models import ApplicantProfile, CanonicalJob
from crewapply.retry import retry

log = get_logger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.3-70b-versatile"

TextGenerator = Callable[[str], str]


def _position(job: CanonicalJob) -> str:
    return job.role if job.role and job.role != "Unknown" else job.title


def _vessel_name(job: CanonicalJob) -> str:
    return job.vessel.name if job.vessel and job.vessel.name else ""


def render_template(template: str, job: CanonicalJob, profile: ApplicantProfile) -> str:
    return (
        template
        .replace("{{position}}", _position(job) or "the position")
        .replace("{{vessel}}", _vessel_name(job) or "your vessel")
        .replace("{{company}}", job.company or "your company")
        .replace("{{name}}", profile.full_name)
    )


def default_letter(job: CanonicalJob, profile: ApplicantProfile) -> str:
    """Fixed-format letter; identical inputs always give identical text."""
    vessel = _vessel_name(job)
    on_vessel = f" on {vessel}" if vessel else ""
    as_position = f" as a {profile.current_position}" if profile.current_position else ""
    certs = (
        f"I hold the following certifications: {', '.join(profile.certifications)}."
        if profile.certifications else ""
    )
    return f"""Dear Hiring Manager,

I am writing to express my interest in the {_position(job) or 'position'} role{on_vessel}.

With {profile.years_experience or 'several'} years of experience in the yachting industry{as_position}, I am confident in my ability to contribute effectively to your team.

{certs}

I am available {profile.available_from or 'immediately'} and would welcome the opportunity to discuss how I can add value to your crew.

Thank you for considering my application.

Best regards,
{profile.full_name}"""


def format_experience(profile: ApplicantProfile) -> str:
    lines = [
        f"Current Position: {profile.current_position}",
        f"Years of Experience: {profile.years_experience}",
        "",
    ]
    if profile.certifications:
        lines.append("Certifications:")
        lines.extend(f"- {cert}" for cert in profile.certifications)
        lines.append("")
    if profile.languages:
        lines.append("Languages:")
        lines.extend(f"- {lang}" for lang in profile.languages)
    return "\n".join(lines)


def build_prompt(job: CanonicalJob, profile: ApplicantProfile) -> str:
    vessel = _vessel_name(job)
    return f"""Write a short, professional cover letter (under 200 words) for a yacht crew position.
Candidate name: {profile.full_name}
Current position: {profile.current_position}
Years of experience: {profile.years_experience}
Certifications: {', '.join(profile.certifications)}
Languages: {', '.join(profile.languages)}
Available from: {profile.available_from or 'immediately'}
Job title: {job.title}
Vessel: {vessel or 'not stated'}
Location: {job.location.raw if job.location else 'not stated'}
Job description (excerpt): {job.description[:1500]}

Mention the most relevant certifications and sea time. End the letter with "Best regards,"
followed by the candidate name: {profile.full_name}. Do not use placeholders like [Your Name]."""


class GroqTextGenerator:
    """``GenerateText`` backed by the openai client pointed at Groq."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, max_tokens: int = 400) -> None:
        from openai import OpenAI

        self.model = model
        self.max_tokens = max_tokens
        self._client = OpenAI(api_key=api_key, base_url=GROQ_BASE_URL)

    @retry(max_attempts=2, base_delay=2.0, retryable=(Exception,))
    def __call__(self, prompt: str) -> str:
        r = self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
        )
        return (r.choices[0].message.content or "").strip()


def text_generator_from_env() -> GroqTextGenerator | None:
    api_key = get_env("GROQ_API_KEY")
    if not api_key:
        log.debug("No GROQ_API_KEY, text generation disabled")
        return None
    return GroqTextGenerator(api_key, get_env("GROQ_LLM_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL)


def generate_cover_letter(
    job: CanonicalJob,
    profile: ApplicantProfile,
    *,
    custom_message: str = "",
    text_generator: TextGenerator | None = None,
) -> str:
    """Pick the letter body: custom message, profile template, generated draft, default."""
    if custom_message:
        return custom_message
    if profile.cover_letter_template:
        return render_template(profile.cover_letter_template, job, profile)
    if text_generator is not None:
        try:
            text = text_generator(build_prompt(job, profile))
        except Exception as exc:
            log.warning("Cover letter generation failed (%s), using template", exc)
        else:
            if text:
                log.info("Cover letter generated for %s", job.title)
                return text
    return default_letter(job, profile)
