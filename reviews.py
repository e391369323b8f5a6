# reviews.py
import logging

from sqlalchemy import func

from core import db, Book, Order, Review, text, utcnow
from errors import Result, ConflictError, NotFoundError, ValidationError, outcome

logger = logging.getLogger(__name__)


def has_purchased(user_id, book_id):
    return db.session.query(
        Order.query.filter_by(user_id=user_id, book_id=book_id, is_cancelled=False).exists()
    ).scalar()


def require_book(book_id):
    if db.session.get(Book, book_id) is None:
        raise NotFoundError("Book not found.")


def review_to_dict(review):
    return {
        "id": review.id,
        "user_name": review.user.full_name if review.user else None,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": review.created_at.isoformat(),
    }


@outcome
def create_review(user, book_id, rating, comment, now=None):
    require_book(book_id)
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")
    comment = text(comment)
    if not comment:
        raise ValidationError("Comment is required.")
    if not has_purchased(user.id, book_id):
        raise ConflictError("You can only review books you have purchased.")
    exists = Review.query.filter_by(user_id=user.id, book_id=book_id, parent_id=None).first()
    if exists is not None:
        raise ConflictError("You have already reviewed this book.")

    review = Review(
        user_id=user.id, book_id=book_id, parent_id=None,
        rating=rating, comment=comment, created_at=now or utcnow(),
    )
    db.session.add(review)
    db.session.commit()
    logger.info("Review %s added for book %s by %s", review.id, book_id, user.id)
    return Result.success("Review submitted successfully.", review=review_to_dict(review))


@outcome
def create_reply(user, book_id, parent_id, comment, now=None):
    require_book(book_id)
    parent = db.session.get(Review, parent_id)
    if parent is None or parent.book_id != book_id or parent.parent_id is not None:
        raise NotFoundError("Parent review not found or invalid.")
    if not has_purchased(user.id, book_id):
        raise ConflictError("You must purchase the book before replying to a review.")
    comment = text(comment)
    if not comment:
        raise ValidationError("Comment is required.")

    reply = Review(
        user_id=user.id, book_id=book_id, parent_id=parent.id,
        rating=0, comment=comment, created_at=now or utcnow(),
    )
    db.session.add(reply)
    db.session.commit()
    return Result.success("Reply submitted successfully!", reply=review_to_dict(reply))


def reviews_for_book(book_id):
    """Top-level reviews, newest first, each carrying its replies oldest first."""
    top = (
        Review.query
        .filter_by(book_id=book_id, parent_id=None)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )
    replies = {}
    if top:
        rows = (
            Review.query
            .filter(Review.parent_id.in_([r.id for r in top]))
            .order_by(Review.created_at, Review.id)
            .all()
        )
        for row in rows:
            replies.setdefault(row.parent_id, []).append(review_to_dict(row))
    threads = []
    for review in top:
        data = review_to_dict(review)
        data["replies"] = replies.get(review.id, [])
        threads.append(data)
    return threads


def average_rating(book_id):
    value = (
        db.session.query(func.avg(Review.rating))
        .filter(Review.book_id == book_id, Review.parent_id.is_(None))
        .scalar()
    )
    return round(float(value), 2) if value is not None else None


def delete_reviews_for(book_id=None, user_id=None):
    """Remove reviews (and replies hanging off them) by book or by author."""
    query = Review.query
    if book_id is not None:
        query = query.filter(Review.book_id == book_id)
    if user_id is not None:
        query = query.filter(Review.user_id == user_id)
    ids = [r.id for r in query.all()]
    if not ids:
        return 0
    Review.query.filter(Review.parent_id.in_(ids)).delete(synchronize_session="fetch")
    return Review.query.filter(Review.id.in_(ids)).delete(synchronize_session="fetch")
