from rewards_engine.models import Activity, DashboardData, PunchCard, QuizState


class TestActivity:
    def test_from_dict_maps_camel_case(self):
        activity = Activity.from_dict({
            "title": "Daily poll",
            "offerId": "Gamification_DailySet_1",
            "name": "poll",
            "complete": False,
            "pointProgressMax": "10",
            "promotionType": "quiz",
            "destinationUrl": "https://www.bing.com/search?q=x&pollscenarioid=1",
        })
        assert activity.offer_id == "Gamification_DailySet_1"
        assert activity.point_progress_max == 10
        assert activity.is_rewarded
        assert not activity.is_locked

    def test_missing_optional_fields(self):
        activity = Activity.from_dict({"title": "Bare", "pointProgressMax": None, "offerId": ""})
        assert activity.offer_id is None
        assert activity.point_progress_max == 0
        assert not activity.is_rewarded

    def test_locked(self):
        assert Activity.from_dict({"title": "x", "exclusiveLockedFeatureStatus": "locked"}).is_locked


class TestDashboardData:
    def test_from_dict(self):
        data = DashboardData.from_dict({
            "dailySetPromotions": {"01/02/2026": [{"title": "a", "offerId": "A"}]},
            "morePromotions": [{"title": "b"}],
            "promotionalItem": {"title": "promo"},
            "punchCards": [{
                "name": "card",
                "parentPromotion": {"title": "parent", "complete": False},
                "childPromotions": [{"title": "child", "offerId": "C"}],
            }],
        })
        assert data.daily_set_promotions["01/02/2026"][0].offer_id == "A"
        assert data.promotional_item.title == "promo"
        card = data.punch_cards[0]
        assert card.is_uncompleted
        assert card.child_promotions[0].offer_id == "C"

    def test_punch_card_without_parent_is_not_uncompleted(self):
        assert not PunchCard.from_dict({"name": "orphan"}).is_uncompleted


class TestQuizState:
    def test_lenient_coercion(self):
        state = QuizState.model_validate({
            "maxQuestions": "3",
            "CorrectlyAnsweredQuestionCount": 1,
            "numberOfOptions": "four",
            "correctAnswer": 2,
            "somethingElse": True,
        })
        assert state.max_questions == 3
        assert state.number_of_options is None
        assert state.correct_answer == "2"
        assert state.questions_remaining == 2

    def test_remaining_unknown_without_max(self):
        assert QuizState.model_validate({"numberOfOptions": 4}).questions_remaining is None

    def test_remaining_never_negative(self):
        state = QuizState.model_validate({"maxQuestions": 2, "CorrectlyAnsweredQuestionCount": 5})
        assert state.questions_remaining == 0
