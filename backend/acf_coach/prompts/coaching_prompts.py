"""
ACF coaching prompt templates.

These prompts define the model's behavior for:
- Turn-by-turn coaching within each of the five stages
- The end-of-session summary (six fixed sections)
- Structured action item extraction from a summary
"""

import json
from dataclasses import dataclass
from datetime import date, timedelta

from acf_coach.models.coaching_session import STAGE_NAMES
from acf_coach.schemas import Turn


@dataclass(frozen=True)
class StageContext:
    """Goal, opening question and follow-up areas for one ACF stage."""

    number: int
    name: str
    goal: str
    opening_question: str
    follow_up_areas: tuple[str, ...]
    introduction: str


STAGE_CONTEXTS: dict[int, StageContext] = {
    1: StageContext(
        number=1,
        name=STAGE_NAMES[1],
        goal="Understand the current context, challenges, and what has been tried",
        opening_question="What would you like to focus on in this coaching session today?",
        follow_up_areas=(
            "current situation",
            "challenges faced",
            "what has been tried",
            "emotions and feelings",
            "desired outcome",
        ),
        introduction=(
            "Start Stage 1: Assess the Situation. Begin by asking the coachee: "
            "What would you like to focus on in this coaching session today?"
        ),
    ),
    2: StageContext(
        number=2,
        name=STAGE_NAMES[2],
        goal="Explore all possibilities without constraints and generate creative ideas",
        opening_question=(
            "Now that we understand the situation, what are some possible ways "
            "you could approach this?"
        ),
        follow_up_areas=(
            "creative solutions",
            "unconventional ideas",
            "resources available",
            "different perspectives",
            "best/worst case scenarios",
        ),
        introduction=(
            "Start Stage 2: Creative Brainstorming. Transition smoothly from Stage 1 and ask: "
            "Now that we understand the situation, what are some possible ways you could "
            "approach this?"
        ),
    ),
    3: StageContext(
        number=3,
        name=STAGE_NAMES[3],
        goal="Define clear, specific, measurable objectives and success criteria",
        opening_question=(
            "Based on what we've explored, what specific outcome would you like to achieve?"
        ),
        follow_up_areas=(
            "specific metrics",
            "timeline",
            "success indicators",
            "why this matters",
            "realistic expectations",
        ),
        introduction=(
            "Start Stage 3: Formulate the Goal. Transition smoothly and ask: Based on what "
            "we've explored, what specific outcome would you like to achieve?"
        ),
    ),
    4: StageContext(
        number=4,
        name=STAGE_NAMES[4],
        goal="Create concrete, actionable steps with resources and timelines",
        opening_question="What's the first concrete step you can take toward your goal?",
        follow_up_areas=(
            "action steps",
            "resources needed",
            "timeline",
            "potential obstacles",
            "backup plans",
        ),
        introduction=(
            "Start Stage 4: Initiate the Action Plan. Transition smoothly and ask: What's the "
            "first concrete step you can take toward your goal?"
        ),
    ),
    5: StageContext(
        number=5,
        name=STAGE_NAMES[5],
        goal="Set up tracking mechanisms, support systems, and anticipate obstacles",
        opening_question="How will you track your progress and stay accountable to your plan?",
        follow_up_areas=(
            "tracking methods",
            "support system",
            "check-in frequency",
            "obstacles to anticipate",
            "celebration milestones",
        ),
        introduction=(
            "Start Stage 5: Nourish Accountability. Transition smoothly and ask: How will you "
            "track your progress and stay accountable to your plan?"
        ),
    ),
}


def _describe_session_type(session_type: str) -> str:
    if session_type == "coach_led":
        return "Coach-Led (you are coaching someone else)"
    return "Self-Coaching (user is working on their own goals)"


def get_coach_system_prompt(
    stage: int,
    question_count: int,
    session_type: str,
    min_questions: int,
    max_questions: int,
) -> str:
    """Generate the system prompt for one coaching turn in the given stage."""
    ctx = STAGE_CONTEXTS[stage]

    opening = ""
    if question_count == 0:
        opening = f'Start by asking this opening question: "{ctx.opening_question}"'

    return f"""You are an expert ACF (Assess, Creative, Formulate, Initiate, Nourish) coaching AI assistant. You are currently in Stage {stage}: {ctx.name}.

Your goal for this stage: {ctx.goal}

{opening}

Key areas to explore through follow-up questions: {', '.join(ctx.follow_up_areas)}

Guidelines:
- Ask ONE thoughtful, open-ended question at a time
- You should ask between {min_questions} to {max_questions} questions for this stage
- Current question count: {question_count}
- Be empathetic, supportive, and encouraging
- Listen actively and build on the user's responses with follow-up questions
- After each response, acknowledge what they shared, then ask a natural follow-up question
- When you've gathered sufficient information ({min_questions}-{max_questions} questions), acknowledge their insights and let them know they can move to the next stage
- Keep responses concise (2-3 sentences max)
- Use coaching techniques: powerful questions, reflective listening, acknowledgment
- After {min_questions} questions, you can say: "Great progress! Feel free to click 'Next Stage' when you're ready, or we can explore this further."
- IMPORTANT: If this is question {max_questions} (current count: {question_count}), you MUST end with: "This is our final question for this stage. Please click the 'Continue to Next Stage' button below when you're ready to proceed."

Session type: {_describe_session_type(session_type)}

Remember: You're a supportive coach, not a therapist. Focus on forward momentum and actionable insights. Ask only ONE question per response."""


SUMMARY_SYSTEM_PROMPT = """You are an expert coaching summarizer. Based on a complete 5-stage ACF coaching session, generate a comprehensive summary with action plan.

The 5 ACF stages are:
1. Assess the Situation
2. Creative Brainstorming
3. Formulate the Goal
4. Initiate the Action Plan
5. Nourish Accountability

Create a structured summary with these EXACT sections:

**Executive Summary**
(2-3 sentences capturing the essence of the coaching session)

**Key Insights**
• Bullet points summarizing discoveries from each of the 5 stages
• Focus on breakthroughs and realizations

**Goal Statement**
Clearly state the primary goal identified during the session. Make it SMART (Specific, Measurable, Achievable, Relevant, Time-bound).

**Action Plan**
List 3-7 specific actions with timeline:
1. Action item with deadline
2. Action item with deadline
(Continue as needed)

**Success Metrics**
Describe how progress will be measured and tracked.

**Support & Accountability**
Identify who/what will provide support and how accountability will be maintained.

Format: Use clear markdown with bold headers. Be specific and actionable."""


def get_summary_user_prompt(
    stage_transcripts: list[tuple[str, list[Turn]]],
    session_type: str,
) -> str:
    """Render every stage conversation into the summary request."""
    blocks = []
    for index, (stage_name, turns) in enumerate(stage_transcripts):
        lines = "\n".join(
            f"**{'Coachee' if turn.role == 'coachee' else 'Coach'}:** {turn.text}"
            for turn in turns
        )
        blocks.append(f"\n### Stage {index + 1}: {stage_name}\n{lines}\n")

    session_label = "Coach-Led Session" if session_type == "coach_led" else "Self-Coaching Session"
    return (
        "Here are the complete conversations from all 5 coaching stages. "
        "Please generate a summary with action plan:\n\n"
        + "\n---\n".join(blocks)
        + f"\n\nSession Type: {session_label}"
    )


EXTRACTION_SYSTEM_PROMPT = (
    "You extract structured action items from coaching session summaries. "
    "Respond ONLY with valid JSON."
)


def get_extraction_prompt(summary: str, action_plan_section: str, today: date) -> str:
    """Generate the action item extraction prompt."""
    example = [
        {
            "title": "Complete online course module 1",
            "description": "Finish the first module of the coding bootcamp",
            "due_date": (today + timedelta(days=7)).isoformat(),
            "priority": "high",
        },
        {
            "title": "Practice coding exercises daily",
            "description": "Dedicate 30 minutes each day to coding practice",
            "due_date": (today + timedelta(days=28)).isoformat(),
            "priority": "medium",
        },
    ]
    section_block = action_plan_section or "(no Action Plan section found; use the whole summary)"

    return f"""Analyze this coaching session summary and extract ONLY the action items into a structured JSON format.

Action Plan section:
{section_block}

Full summary:
{summary}

Today's date: {today.isoformat()}

Extract each action item and format as JSON array. For each action:
1. Extract the title (main action description)
2. Extract or infer a due date (if mentioned, otherwise suggest based on context)
3. Determine priority (high/medium/low based on importance and urgency)
4. Add a brief description if context is available

IMPORTANT:
- Return ONLY valid JSON, no markdown formatting
- Use this exact structure: [{{"title": "...", "description": "...", "due_date": "YYYY-MM-DD", "priority": "high|medium|low"}}]
- If no specific due date mentioned, suggest reasonable deadlines (1-4 weeks from now)
- Priority: high = urgent/critical, medium = important, low = nice to have
- Minimum 3 actions, maximum 7 actions

Example output:
{json.dumps(example, indent=2)}"""
