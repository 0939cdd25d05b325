from pydantic import BaseModel, Field, model_validator
from typing import Literal, Optional
import secrets
import string
import time

from config import DEFAULT_QUESTION_TIME_LIMIT


QuestionType = Literal[
    'single-choice', 'multiple-choice', 'slider', 'free-response', 'poll-single', 'poll-multiple'
]
GameState = Literal['lobby', 'preparing', 'question', 'leaderboard', 'ended']

QUESTION_TYPES: tuple[str, ...] = (
    'single-choice', 'multiple-choice', 'slider', 'free-response', 'poll-single', 'poll-multiple'
)
POLL_TYPES = frozenset({'poll-single', 'poll-multiple'})
CHOICE_TYPES = frozenset({'single-choice', 'multiple-choice', 'poll-single', 'poll-multiple'})
SINGLE_INDEX_TYPES = frozenset({'single-choice', 'poll-single'})
MULTI_INDEX_TYPES = frozenset({'multiple-choice', 'poll-multiple'})

NO_ANSWER_INDEX = -1  # sentinel: no answer / timeout


class AnswerKeyEntry(BaseModel):
    """Server-only scoring data for one question. Never sent to players."""
    type: QuestionType
    timeLimit: float = DEFAULT_QUESTION_TIME_LIMIT
    optionCount: int = 0  # 0 = unknown (answer key supplied by the client)
    correctAnswerIndex: Optional[int] = None
    correctAnswerIndices: Optional[list[int]] = None
    minValue: Optional[float] = None
    maxValue: Optional[float] = None
    correctValue: Optional[float] = None
    acceptableError: Optional[float] = None
    correctAnswer: Optional[str] = None
    alternativeAnswers: list[str] = []
    caseSensitive: bool = False
    allowTypos: bool = True

    def problems(self) -> list[str]:
        """Configuration errors that would make this question unscoreable."""
        issues = []
        if self.timeLimit <= 0:
            issues.append("timeLimit must be positive")

        def index_ok(idx: int) -> bool:
            return idx >= 0 and (self.optionCount == 0 or idx < self.optionCount)

        if self.type == 'single-choice':
            if self.correctAnswerIndex is None or not index_ok(self.correctAnswerIndex):
                issues.append("single-choice requires a valid correctAnswerIndex")
        elif self.type == 'multiple-choice':
            if not self.correctAnswerIndices:
                issues.append("multiple-choice requires at least one correct answer index")
            elif not all(index_ok(i) for i in self.correctAnswerIndices):
                issues.append("multiple-choice correctAnswerIndices out of range")
        elif self.type == 'slider':
            if self.minValue is None or self.maxValue is None or self.correctValue is None:
                issues.append("slider requires minValue, maxValue and correctValue")
            elif self.maxValue <= self.minValue:
                issues.append("slider maxValue must be greater than minValue")
            elif not (self.minValue <= self.correctValue <= self.maxValue):
                issues.append("slider correctValue must lie within [minValue, maxValue]")
            if self.acceptableError is not None and self.acceptableError < 0:
                issues.append("slider acceptableError cannot be negative")
        elif self.type == 'free-response':
            if not (self.correctAnswer or '').strip():
                issues.append("free-response requires a correctAnswer")
        return issues


class SanitizedQuestion(BaseModel):
    """Client-facing question (answer key stripped)."""
    type: QuestionType
    text: str
    options: list[str] = []
    timeLimit: float = DEFAULT_QUESTION_TIME_LIMIT
    minValue: Optional[float] = None
    maxValue: Optional[float] = None


class Question(BaseModel):
    type: QuestionType = 'single-choice'
    text: str
    options: list[str] = []
    timeLimit: float = Field(default=DEFAULT_QUESTION_TIME_LIMIT, gt=0, le=600)
    correctAnswerIndex: Optional[int] = None
    correctAnswerIndices: Optional[list[int]] = None
    minValue: Optional[float] = None
    maxValue: Optional[float] = None
    correctValue: Optional[float] = None
    acceptableError: Optional[float] = None
    correctAnswer: Optional[str] = None
    alternativeAnswers: list[str] = []
    caseSensitive: bool = False
    allowTypos: bool = True

    @model_validator(mode='after')
    def _check_answer_config(self):
        if self.type in CHOICE_TYPES and len(self.options) < 2:
            raise ValueError(f"{self.type} question needs at least 2 options")
        issues = self.answer_key().problems()
        if issues:
            raise ValueError("; ".join(issues))
        return self

    def sanitized(self) -> SanitizedQuestion:
        return SanitizedQuestion(
            type=self.type,
            text=self.text,
            options=self.options,
            timeLimit=self.timeLimit,
            minValue=self.minValue if self.type == 'slider' else None,
            maxValue=self.maxValue if self.type == 'slider' else None,
        )

    def answer_key(self) -> AnswerKeyEntry:
        return AnswerKeyEntry(
            type=self.type,
            timeLimit=self.timeLimit,
            optionCount=len(self.options) if self.type in CHOICE_TYPES else 0,
            correctAnswerIndex=self.correctAnswerIndex,
            correctAnswerIndices=self.correctAnswerIndices,
            minValue=self.minValue,
            maxValue=self.maxValue,
            correctValue=self.correctValue,
            acceptableError=self.acceptableError,
            correctAnswer=self.correctAnswer,
            alternativeAnswers=self.alternativeAnswers,
            caseSensitive=self.caseSensitive,
            allowTypos=self.allowTypos,
        )


class AnswerKey(BaseModel):
    questions: list[AnswerKeyEntry] = []


class Quiz(BaseModel):
    id: str
    hostId: str
    title: str = ""
    questions: list[Question]


class PlayerAnswer(BaseModel):
    """Immutable record of one scored (or timed-out) answer."""
    questionIndex: int
    questionType: QuestionType
    answerIndex: Optional[int] = None
    answerIndices: Optional[list[int]] = None
    sliderValue: Optional[float] = None
    textAnswer: Optional[str] = None
    points: int = 0
    isCorrect: bool = False
    isPartiallyCorrect: bool = False
    wasTimeout: bool = False
    timeRemaining: float = 0
    streak: int = 0  # streak after this answer
    timestamp: float = Field(default_factory=time.time)


class Player(BaseModel):
    id: str
    name: str
    score: int = 0
    currentStreak: int = 0
    answers: list[PlayerAnswer] = []
    joinedAt: float = Field(default_factory=time.time)

    def answer_for(self, question_index: int) -> Optional[PlayerAnswer]:
        return next((a for a in self.answers if a.questionIndex == question_index), None)

    def has_answered(self, question_index: int) -> bool:
        return self.answer_for(question_index) is not None


class GameSettings(BaseModel):
    timerMode: bool = False  # server finishes the question when its time limit runs out
    autoFinishMode: bool = False  # finish as soon as every player has answered
    leaderboardSize: Optional[int] = Field(default=None, ge=1, le=100)


class Game(BaseModel):
    id: str
    quizId: str
    hostId: str
    gamePin: str
    state: GameState = 'lobby'
    currentQuestionIndex: int = 0
    questionCount: int = 0
    questionStartTime: Optional[float] = None  # server clock, epoch seconds
    questions: list[SanitizedQuestion] = []  # filled in when the game starts
    settings: GameSettings = GameSettings()
    createdAt: float = Field(default_factory=time.time)

    def is_last_question(self) -> bool:
        return self.currentQuestionIndex >= self.questionCount - 1

    def question_types(self) -> list[str]:
        return [q.type for q in self.questions]


class LeaderboardEntry(BaseModel):
    id: str
    name: str
    score: int
    currentStreak: int
    lastQuestionPoints: int
    rank: int


class PlayerRankInfo(BaseModel):
    rank: int
    totalPlayers: int


class GameLeaderboard(BaseModel):
    """Denormalized per-game summary: clients read this one document, not every player."""
    questionIndex: int = 0
    topPlayers: list[LeaderboardEntry] = []
    totalPlayers: int = 0
    totalAnswered: int = 0
    answerCounts: list[int] = []
    answeredPlayerIds: list[str] = []  # who is already counted for questionIndex
    playerRanks: dict[str, PlayerRankInfo] = {}
    playerStreaks: dict[str, int] = {}
    lastUpdated: Optional[float] = None


# --- Post-game analytics ---

class AnswerDistributionEntry(BaseModel):
    label: str
    count: int
    isCorrect: bool


class SliderDistribution(BaseModel):
    correctValue: float
    minValue: float
    maxValue: float
    playerValues: list[float] = []


class FreeResponseEntry(BaseModel):
    text: str
    count: int
    isCorrect: bool


class QuestionStats(BaseModel):
    questionIndex: int
    questionText: str
    questionType: QuestionType
    totalAnswered: int = 0  # excludes timeouts
    totalTimeout: int = 0
    timeoutRate: float = 0  # % of players without a real answer
    correctCount: int = 0
    correctRate: float = 0
    avgResponseTime: float = 0  # seconds
    avgPoints: float = 0
    answerDistribution: Optional[list[AnswerDistributionEntry]] = None
    sliderDistribution: Optional[SliderDistribution] = None
    freeResponseDistribution: Optional[list[FreeResponseEntry]] = None


class PositionHistoryEntry(BaseModel):
    playerId: str
    playerName: str
    positions: list[int]  # rank after each question
    finalScore: int


class ScoreBin(BaseModel):
    minScore: int
    maxScore: int
    count: int


class LeaderboardWithStats(BaseModel):
    playerId: str
    playerName: str
    rank: int
    finalScore: int
    correctAnswers: int
    totalAnswered: int
    timeouts: int
    accuracy: float
    avgResponseTime: float


class QuestionRate(BaseModel):
    index: int
    correctRate: float


class GameAnalyticsSummary(BaseModel):
    hardestQuestion: Optional[QuestionRate] = None
    easiestQuestion: Optional[QuestionRate] = None
    avgScore: float = 0
    avgAccuracy: float = 0
    avgTimeoutRate: float = 0


class GameAnalytics(BaseModel):
    gameId: str
    quizId: str
    quizTitle: str = ""
    totalQuestions: int
    totalPlayers: int
    computedAt: float = Field(default_factory=time.time)
    questionStats: list[QuestionStats] = []
    positionHistory: list[PositionHistoryEntry] = []
    scoreDistribution: list[ScoreBin] = []
    fullLeaderboard: list[LeaderboardWithStats] = []
    summary: GameAnalyticsSummary = GameAnalyticsSummary()


# --- RPC payloads ---

class SubmitAnswerRequest(BaseModel):
    gameId: Optional[str] = None
    playerId: Optional[str] = None
    questionIndex: Optional[int] = None
    timeRemaining: Optional[float] = None
    questionType: Optional[str] = None

    # Answer payload (one is used, depending on questionType)
    answerIndex: Optional[int] = None
    answerIndices: Optional[list[int]] = None
    sliderValue: Optional[float] = None
    textAnswer: Optional[str] = None

    # Question metadata; only consulted when the game has no stored answer key
    questionTimeLimit: Optional[float] = None
    correctAnswerIndex: Optional[int] = None
    correctAnswerIndices: Optional[list[int]] = None
    correctValue: Optional[float] = None
    minValue: Optional[float] = None
    maxValue: Optional[float] = None
    acceptableError: Optional[float] = None
    correctAnswer: Optional[str] = None
    alternativeAnswers: list[str] = []
    caseSensitive: bool = False
    allowTypos: bool = True

    def client_answer_key(self) -> AnswerKeyEntry:
        """Answer key built from the request's own metadata (untrusted)."""
        return AnswerKeyEntry(
            type=self.questionType,
            timeLimit=self.questionTimeLimit or DEFAULT_QUESTION_TIME_LIMIT,
            correctAnswerIndex=self.correctAnswerIndex,
            correctAnswerIndices=self.correctAnswerIndices,
            minValue=self.minValue,
            maxValue=self.maxValue,
            correctValue=self.correctValue,
            acceptableError=self.acceptableError,
            correctAnswer=self.correctAnswer,
            alternativeAnswers=self.alternativeAnswers,
            caseSensitive=self.caseSensitive,
            allowTypos=self.allowTypos,
        )


class SubmitAnswerResult(BaseModel):
    success: bool
    isCorrect: bool
    isPartiallyCorrect: bool
    points: int
    newScore: int
    currentStreak: int = 0
    rank: Optional[int] = None
    totalPlayers: Optional[int] = None


class ComputeQuestionResultsRequest(BaseModel):
    gameId: Optional[str] = None
    questionIndex: Optional[int] = None
    questionType: Optional[str] = None


class ComputeQuestionResultsResult(BaseModel):
    success: bool
    questionIndex: int
    totalAnswered: int = 0
    totalPlayers: int = 0


class ComputeGameAnalyticsRequest(BaseModel):
    gameId: Optional[str] = None


class ComputeGameAnalyticsResult(BaseModel):
    success: bool
    totalPlayers: int
    totalQuestions: int


def generate_game_pin(length: int = 6) -> str:
    """Generate a short, human-shareable join code"""
    chars = string.ascii_uppercase + string.digits
    # Remove confusing characters
    chars = chars.replace('O', '').replace('0', '').replace('I', '').replace('1', '')
    return ''.join(secrets.choice(chars) for _ in range(length))


def generate_token() -> str:
    """Generate a secure random token"""
    return secrets.token_urlsafe(32)


def generate_id() -> str:
    """Generate a document ID for games, quizzes and players"""
    return secrets.token_urlsafe(16)
