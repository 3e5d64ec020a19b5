DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced")
DEFAULT_DIFFICULTY = "beginner"

DIFFICULTY_LABELS = {
    "beginner": "Beginner",
    "intermediate": "Intermediate",
    "advanced": "Advanced",
}

# Seconds to contract, seconds to relax, number of sets
KEGEL_CONFIGS = {
    "beginner": {"contract_seconds": 3, "relax_seconds": 3, "sets": 10},
    "intermediate": {"contract_seconds": 5, "relax_seconds": 5, "sets": 15},
    "advanced": {"contract_seconds": 8, "relax_seconds": 8, "sets": 20},
}

KEGEL_KINDS = ("kegel-morning", "kegel-night")
EXERCISE_KINDS = KEGEL_KINDS + ("start-stop", "breathing")

START_STOP_DURATION = 600
BREATHING_DURATION = 300

# Monday, Wednesday, Friday
START_STOP_WEEKDAYS = (0, 2, 4)

# Phase name and length, cycled in order
BREATHING_PHASES = (
    ("breathe", 4),
    ("hold", 4),
    ("exhale", 6),
)

PHASE_LABELS = {
    "contract": "CONTRACT",
    "relax": "RELAX",
    "breathe": "BREATHE IN",
    "hold": "HOLD",
    "exhale": "BREATHE OUT",
    "countdown": "FOLLOW THE INSTRUCTIONS",
}

KEGEL_TEXT = {
    "kegel-morning": {
        "name": "Morning Kegel",
        "period": "morning",
        "description": "Kegel exercise to start the day with energy",
        "closing_instruction": "Keep breathing normally",
    },
    "kegel-night": {
        "name": "Night Kegel",
        "period": "night",
        "description": "Kegel exercise before going to sleep",
        "closing_instruction": "Focus on the quality of each contraction",
    },
}

START_STOP_EXERCISE = {
    "kind": "start-stop",
    "name": "Start-Stop Technique",
    "period": "morning",
    "duration_seconds": START_STOP_DURATION,
    "description": "Exercise for ejaculatory control",
    "instructions": [
        "Stimulate yourself until you feel close to climax",
        "Stop all stimulation completely",
        "Wait 30-60 seconds until the sensation fades",
        "Repeat the process 3-5 times",
        "This trains control and recognition of your body's signals",
    ],
}

BREATHING_EXERCISE = {
    "kind": "breathing",
    "name": "Breathing Control",
    "period": "morning",
    "duration_seconds": BREATHING_DURATION,
    "description": "Breathing exercise for control and relaxation",
    "instructions": [
        "Breathe in deeply through your nose for 4 seconds",
        "Hold the breath for 4 seconds",
        "Breathe out slowly through your mouth for 6 seconds",
        "Repeat for 5 minutes",
        "Controlled breathing helps you stay in control during intimacy",
    ],
}

DAILY_TIPS = {
    "start-stop": (
        "Today is a Start-Stop day. This exercise is key to building control. "
        "Practise calmly and pay attention to your body's signals."
    ),
    "breathing": (
        "Today, practise the breathing exercise. Controlled breathing is essential "
        "for staying in control at moments of high arousal. Combine it with the "
        "Kegel exercises for better results."
    ),
}

DEFAULT_STATS = {
    "current_streak": 0,
    "total_completed": 0,
    "last_completed_date": None,
}
