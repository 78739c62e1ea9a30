# ========================================================================================
# INTEREST AND URGENCY DETECTOR
# Keyword and pattern scoring of how engaged and how hurried the user is
# ========================================================================================

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class InterestAnalysis:
    interest_level: str  # high | medium | low
    urgency_level: str   # urgent | normal | casual
    confidence: float
    indicators: Dict[str, List[str]] = field(default_factory=lambda: {
        "positive": [],
        "negative": [],
        "urgency": [],
        "casual": []
    })

    @property
    def total_indicators(self) -> int:
        return sum(len(matches) for matches in self.indicators.values())


class InterestDetector:
    """Scores user messages for interest and urgency"""

    def __init__(self):
        # Strong engagement
        self.high_interest_keywords = [
            'interested', 'want', 'need', 'love', 'excited', 'ready', 'sign up', 'join',
            'start', 'begin', 'when can', 'how do i', 'tell me more', 'sounds great',
            'perfect', 'awesome', 'amazing', 'definitely', 'absolutely', 'yes please',
            'membership', 'pricing', 'cost', 'schedule', 'classes', 'workout'
        ]

        # Hesitation or disengagement
        self.low_interest_keywords = [
            'maybe', 'not sure', 'thinking about', 'considering', 'later', 'sometime',
            'not ready', 'busy', 'no time', 'expensive', 'too much', 'cant afford',
            'just looking', 'browsing', 'information only', 'not interested'
        ]

        self.urgency_keywords = [
            'now', 'today', 'asap', 'quickly', 'urgent', 'immediate', 'right away',
            'this week', 'soon', 'fast', 'hurry', 'rush', 'deadline', 'limited time',
            'before', 'by when', 'how long', 'waiting'
        ]

        self.casual_keywords = [
            'whenever', 'no rush', 'take my time', 'eventually', 'someday', 'flexible',
            'no hurry', 'when convenient', 'at some point', 'down the road',
            'in the future', 'maybe later', 'not urgent'
        ]

        # Questions a buyer asks
        self.interest_questions = [
            re.compile(pattern, re.IGNORECASE) for pattern in [
                r'what.*cost', r'how much', r'what.*price', r'what.*include',
                r'when.*open', r'what.*hours', r'how.*join', r'where.*located',
                r'what.*classes', r'what.*equipment', r'can.*bring', r'do.*have'
            ]
        ]

        self.disinterest_patterns = [
            re.compile(pattern, re.IGNORECASE) for pattern in [
                r'just.*looking', r'not.*ready', r'maybe.*later', r'too.*expensive',
                r'cant.*afford', r'no.*time', r'too.*busy', r'not.*interested'
            ]
        ]

        self.buying_signals = [
            'how do i sign up', 'want to join', 'ready to start', 'lets do this',
            'sign me up', 'where do i pay', 'what do i need', 'when can i start',
            'sounds good', 'im interested', 'yes please', 'perfect'
        ]

        # Order matters: the first category hit becomes the objection type
        self.objection_patterns = {
            "price": ['expensive', 'cost', 'afford', 'money', 'budget', 'cheap'],
            "time": ['busy', 'no time', 'schedule', 'when', 'available'],
            "commitment": ['contract', 'commitment', 'locked in', 'cancel', 'quit'],
            "location": ['far', 'close', 'location', 'drive', 'distance'],
            "general": ['not sure', 'maybe', 'thinking', 'hesitant', 'worried']
        }

    def analyze_message(self, message: str, conversation_history: Optional[List[str]] = None) -> InterestAnalysis:
        """Analyze a message, optionally in light of the user's previous messages"""

        message_lower = message.lower()
        indicators = {
            "positive": [keyword for keyword in self.high_interest_keywords if keyword in message_lower],
            "negative": [keyword for keyword in self.low_interest_keywords if keyword in message_lower],
            "urgency": [keyword for keyword in self.urgency_keywords if keyword in message_lower],
            "casual": [keyword for keyword in self.casual_keywords if keyword in message_lower]
        }

        question_score = 0
        for pattern in self.interest_questions:
            if pattern.search(message):
                question_score += 2
                indicators["positive"].append('interest_question')

        for pattern in self.disinterest_patterns:
            if pattern.search(message):
                question_score -= 2
                indicators["negative"].append('disinterest_pattern')

        positive_score = len(indicators["positive"]) * 2 + question_score
        negative_score = len(indicators["negative"]) * 2
        net_interest = positive_score - negative_score

        if net_interest >= 4:
            interest_level = "high"
        elif net_interest >= 1:
            interest_level = "medium"
        else:
            interest_level = "low"

        net_urgency = len(indicators["urgency"]) * 2 - len(indicators["casual"]) * 2

        if net_urgency >= 2:
            urgency_level = "urgent"
        elif net_urgency <= -2:
            urgency_level = "casual"
        else:
            urgency_level = "normal"

        if conversation_history:
            history_analysis = self.analyze_conversation_history(conversation_history)

            # History only reinforces interest; urgency stays with the current message
            if history_analysis.interest_level == "high" and interest_level != "low":
                interest_level = "high"
            elif history_analysis.interest_level == "low" and interest_level != "high":
                interest_level = "low"

        total_indicators = sum(len(matches) for matches in indicators.values())
        confidence = min(0.9, max(0.3, total_indicators * 0.15 + 0.3))

        return InterestAnalysis(
            interest_level=interest_level,
            urgency_level=urgency_level,
            confidence=confidence,
            indicators=indicators
        )

    def analyze_conversation_history(self, history: List[str]) -> InterestAnalysis:
        """Average indicator counts across previous messages"""

        if not history:
            return InterestAnalysis(interest_level="medium", urgency_level="normal", confidence=0.3)

        totals = {"positive": 0, "negative": 0, "urgency": 0, "casual": 0}
        for previous in history:
            analysis = self.analyze_message(previous)
            for category in totals:
                totals[category] += len(analysis.indicators[category])

        averages = {category: count / len(history) for category, count in totals.items()}

        net_interest = averages["positive"] - averages["negative"]
        if net_interest >= 1.5:
            interest_level = "high"
        elif net_interest >= 0.5:
            interest_level = "medium"
        else:
            interest_level = "low"

        net_urgency = averages["urgency"] - averages["casual"]
        if net_urgency >= 0.5:
            urgency_level = "urgent"
        elif net_urgency <= -0.5:
            urgency_level = "casual"
        else:
            urgency_level = "normal"

        return InterestAnalysis(
            interest_level=interest_level,
            urgency_level=urgency_level,
            confidence=min(0.8, len(history) * 0.1 + 0.3),
            indicators={
                category: [f"avg_{category}: {average:.1f}"]
                for category, average in averages.items()
            }
        )

    def detect_buying_signals(self, message: str) -> Dict[str, Any]:
        message_lower = message.lower()
        found_signals = [signal for signal in self.buying_signals if signal in message_lower]

        if len(found_signals) >= 3:
            strength = "strong"
        elif found_signals:
            strength = "moderate"
        else:
            strength = "weak"

        return {
            "has_buying_signals": bool(found_signals),
            "signals": found_signals,
            "strength": strength
        }

    def detect_objections(self, message: str) -> Dict[str, Any]:
        """Find hesitations; the first category matched is the primary type"""

        message_lower = message.lower()
        found_objections = []
        primary_type = "none"

        for objection_type, keywords in self.objection_patterns.items():
            for keyword in keywords:
                if keyword in message_lower:
                    found_objections.append(f"{objection_type}: {keyword}")
                    if primary_type == "none":
                        primary_type = objection_type

        return {
            "has_objections": bool(found_objections),
            "objections": found_objections,
            "type": primary_type
        }


__all__ = ['InterestAnalysis', 'InterestDetector']
