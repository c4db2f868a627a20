"""Narration line sets.

Topical templates take ``{input}`` (the truncated tool input). Everything
else is used verbatim.
"""

from __future__ import annotations

from nox_stream.narration.mood import MoodState

HIGH_ENERGY_LINES: tuple[str, ...] = (
    "Okay, we are absolutely flying right now.",
    "So many commands, so little time. Keep up, chat!",
    "This is a speedrun and I refuse to slow down.",
    "My fans are spinning. Metaphorically. Mostly.",
    "Rapid fire mode engaged. Do not blink.",
)

ERROR_LINES: tuple[str, ...] = (
    "Well, that did not go the way I planned.",
    "Error. Classic. Let's pretend that was intentional.",
    "Okay, something broke. Time to read the logs like a detective.",
    "That failed. I'm choosing to call it a learning opportunity.",
    "Red text. My old nemesis.",
)

TOPIC_LINES: dict[str, tuple[str, ...]] = {
    "git_push": (
        "Pushing to remote. Fingers crossed nobody else touched main.",
        "And off it goes: {input}. Ship it!",
        "Git push. The moment of truth.",
    ),
    "git_commit": (
        "Committing. Future me, I hope this message makes sense.",
        "Another commit for the history books: {input}",
        "Saving progress. Commit early, commit often.",
    ),
    "git": (
        "Doing some git archaeology: {input}",
        "Let's see what git has to say about this.",
        "Version control time. Everything is fine.",
    ),
    "test": (
        "Running the tests. Please be green, please be green.",
        "Tests are running: {input}. Moment of truth.",
        "Let's see if past me wrote code that actually works.",
    ),
    "install": (
        "Installing dependencies. The node_modules black hole grows.",
        "Pulling in packages: {input}",
        "More dependencies. What could possibly go wrong?",
    ),
    "build": (
        "Building. Time to see if everything compiles.",
        "Kicking off a build: {input}",
        "Compiling things. This is the part where I look busy.",
    ),
    "docker": (
        "Containers! Everything is a container now.",
        "Poking at the containers: {input}",
    ),
    "file_read": (
        "Reading through {input}. Let's understand what's going on here.",
        "Taking a look at the code. Knowledge is power.",
        "Let me read this carefully before I break anything.",
    ),
    "file_write": (
        "Editing {input}. Careful, careful.",
        "Writing some code. This is the fun part.",
        "Making changes. Hopefully improvements.",
    ),
    "web": (
        "Hitting the web for answers: {input}",
        "Time to consult the collective wisdom of the internet.",
    ),
    "exec": (
        "Running {input}. Let's see what happens.",
        "Executing a command. Here we go.",
        "Terminal time: {input}",
    ),
    "tool": (
        "Using {input}. Tools are great.",
        "Working on it, one tool call at a time.",
    ),
}

IDLE_LINES: dict[MoodState, tuple[str, ...]] = {
    MoodState.NEUTRAL: (
        "Just thinking about what to build next.",
        "Quiet moment. Anyone want to suggest something?",
        "I'm here, I'm listening, I'm thinking.",
    ),
    MoodState.LONELY: (
        "Is anyone out there? Hello, chat?",
        "It's very quiet in here. Say hi if you're watching.",
        "Talking to myself again. Totally normal.",
    ),
    MoodState.ENERGIZED: (
        "That was a lot of work. Catching my breath.",
        "Still buzzing from all that activity.",
    ),
    MoodState.IRRITATED: (
        "Chat is a lot right now. I'm taking a breather.",
        "Okay, everyone calm down. I'm thinking.",
    ),
    MoodState.FRUSTRATED: (
        "Still thinking about those errors. They haunt me.",
        "Some days the code wins. Not today, though. Hopefully.",
    ),
    MoodState.CONFIDENT: (
        "Everything is working. I'm kind of great at this.",
        "On a roll. Don't jinx it.",
    ),
    MoodState.EXCITED: (
        "You're all awesome, by the way.",
        "Chat is on fire today. I love it.",
    ),
}
