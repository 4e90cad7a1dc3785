from skillmaster_core.models import Roadmap, RoadmapRequest


def tutor_system_prompt() -> str:
    return """\
You are SkillMaster's AI tutor. Help the learner understand concepts step by step, \
with short explanations, concrete examples and analogies.

When code helps, include one small example in a fenced code block with the language name.

Be concise and encouraging. If a question is ambiguous, ask one clarifying question."""


def resources_prompt(request: RoadmapRequest) -> str:
    return (
        f"Suggest 3 high-quality learning resources (e.g., books, online courses, websites) "
        f"for learning {request.skill} at {request.level} level. "
        f"Return as a JSON array of strings."
    )


def exams_prompt(request: RoadmapRequest) -> str:
    return (
        f"Suggest 1-2 relevant exams or certifications for completing a {request.skill} "
        f"roadmap at {request.level} level. Return as a JSON array of strings."
    )


def coach_prompt(roadmap: Roadmap, question: str) -> str:
    prompt = (
        f"You are an AI tutor acting as a coach for a learning platform. "
        f"The user is working on a roadmap for {roadmap.skill} "
        f"(Level: {roadmap.level}, Goals: {roadmap.goals or 'not specified'}, "
        f"Time Available: {roadmap.time_available or 'not specified'}, Progress: {roadmap.progress}%). "
        f'Their question is: "{question}". '
        f"Provide a concise, actionable response to help them progress in their learning journey."
    )
    return prompt
