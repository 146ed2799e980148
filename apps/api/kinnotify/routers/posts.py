from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.audit import write_audit
from kinnotify.deps import get_current_user, get_db, get_dispatcher
from kinnotify.models import Comment, NotificationType, Post, User
from kinnotify.notifications.dispatcher import NotificationDispatcher, dispatch_in_background
from kinnotify.schemas import CommentCreateIn, CommentOut, PostCreateIn, PostOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["posts"])

MENTION_RE = re.compile(r"@(\w+)")


def _post_out(p: Post) -> PostOut:
  return PostOut(id=p.id, userId=p.user_id, userName=p.user_name, content=p.content, createdAt=p.created_at)


def _comment_out(c: Comment) -> CommentOut:
  return CommentOut(id=c.id, postId=c.post_id, userId=c.user_id, userName=c.user_name, text=c.text, createdAt=c.created_at)


def mentioned_names(text: str) -> list[str]:
  return list(dict.fromkeys(MENTION_RE.findall(text or "")))


@router.post("", response_model=PostOut, status_code=status.HTTP_201_CREATED)
async def create_post(
  payload: PostCreateIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PostOut:
  now = datetime.now(timezone.utc)
  p = Post(user_id=actor.id, user_name=actor.name, content=payload.content, created_at=now, updated_at=now)
  db.add(p)
  await db.flush()
  await write_audit(db, event_type="post.created", entity_type="Post", entity_id=p.id, actor_id=actor.id)
  await db.commit()

  post_id, author_id, author_name, content = p.id, actor.id, actor.name, p.content

  async def _fan_out(bg: AsyncSession) -> None:
    res = await bg.execute(select(User.id).where(User.active.is_(True), User.id != author_id))
    recipients = list(res.scalars().all())
    sent = await dispatcher.send_batch(
      bg,
      recipients,
      type=NotificationType.NEW_POST,
      entity_type="post",
      entity_id=post_id,
      title=f"New Post from {author_name}",
      body=content,
    )
    logger.info("New post %s notified %s of %s users", post_id, sent, len(recipients))

  dispatch_in_background(_fan_out, label=f"new post {post_id}")
  return _post_out(p)


@router.post("/{post_id}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def create_comment(
  post_id: str,
  payload: CommentCreateIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> CommentOut:
  res = await db.execute(select(Post).where(Post.id == post_id))
  post = res.scalar_one_or_none()
  if not post:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

  c = Comment(post_id=post.id, user_id=actor.id, user_name=actor.name, text=payload.text, created_at=datetime.now(timezone.utc))
  db.add(c)
  await db.flush()
  await write_audit(db, event_type="comment.created", entity_type="Comment", entity_id=c.id, actor_id=actor.id, payload={"postId": post.id})
  await db.commit()

  comment_id, author_id, commenter_id, commenter_name, text = c.id, post.user_id, actor.id, actor.name, c.text

  async def _notify(bg: AsyncSession) -> None:
    if author_id != commenter_id:
      await dispatcher.send(
        bg,
        user_id=author_id,
        type=NotificationType.NEW_COMMENT,
        entity_type="post",
        entity_id=post_id,
        title=f"{commenter_name} commented on your post",
        body=text,
      )
    names = mentioned_names(text)
    if not names:
      return
    ures = await bg.execute(select(User.id).where(User.name.in_(names), User.active.is_(True)))
    targets = [uid for uid in dict.fromkeys(ures.scalars().all()) if uid not in (commenter_id, author_id)]
    await dispatcher.send_batch(
      bg,
      targets,
      type=NotificationType.MENTION,
      entity_type="comment",
      entity_id=comment_id,
      title=f"{commenter_name} mentioned you in a comment",
      body=text,
      data={"postId": post_id},
    )

  dispatch_in_background(_notify, label=f"comment {comment_id}")
  return _comment_out(c)
