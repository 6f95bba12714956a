import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from pymongo.database import Database
from pymongo.errors import PyMongoError

import analytics
import auth
import database
import engine
import members
import settings_store
from config import (ACCESS_COOKIE, COOKIE_SECURE, FRONTEND_ORIGINS, LOG_LEVEL, PORT,
                    REFRESH_COOKIE)
from database import get_db
from errors import DeskError, SessionExpired

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Hubly Desk API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Helpers ----------

def _set_cookie(response: Response, key: str, value: str) -> None:
    response.set_cookie(
        key,
        value,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="none" if COOKIE_SECURE else "lax",
        path="/",
    )


def _clear_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")


# ---------- Error handling ----------

@app.exception_handler(DeskError)
def desk_error_handler(request: Request, exc: DeskError):
    response = JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    if isinstance(exc, SessionExpired):
        _clear_cookies(response)
    return response


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Please share all details"})


@app.exception_handler(PyMongoError)
def storage_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong, Please try later!"})


# ---------- Request Models ----------

class RegisterRequest(BaseModel):
    firstName: str
    lastName: str
    email: EmailStr
    password: str
    confirmPassword: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class MemberCreateRequest(BaseModel):
    name: str
    email: EmailStr


class MemberUpdateRequest(BaseModel):
    firstName: str
    lastName: str
    email: EmailStr
    phone: str
    password: Optional[str] = None
    confirmPassword: Optional[str] = None


class LeadFormRequest(BaseModel):
    leadID: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class LeadMessageRequest(BaseModel):
    leadID: Optional[str] = None
    message: Optional[str] = None


class StaffMessageRequest(BaseModel):
    leadID: Optional[str] = None
    message: Optional[str] = None
    clientMessageID: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    leadID: Optional[str] = None
    status: Optional[str] = None


class AssigneeUpdateRequest(BaseModel):
    leadID: Optional[str] = None
    assigneeID: Optional[str] = None


class FormPlaceholderIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    submitButton: Optional[str] = None


class MissedChatTimerIn(BaseModel):
    hour: int = 0
    minute: int = 0
    second: int = 0


class BotSettingsRequest(BaseModel):
    headerColor: str
    backgroundColor: str
    customizedMessages: List[str]
    formPlaceholder: FormPlaceholderIn
    welcomeMessage: str
    missedChatTimer: MissedChatTimerIn


# ---------- Startup: indexes and default settings ----------

@app.on_event("startup")
def bootstrap():
    if database.db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        return
    database.ensure_indexes(database.db)
    settings_store.ensure_default_settings(database.db)


# ---------- Auth dependency ----------

def get_current_user(request: Request, response: Response, authorization: Optional[str] = Header(None),
                     db: Database = Depends(get_db)):
    if authorization and authorization.lower().startswith("bearer "):
        access_token = authorization.split(" ", 1)[1]
    else:
        access_token = request.cookies.get(ACCESS_COOKIE)
    user, renewed = auth.resolve_identity(db, access_token, request.cookies.get(REFRESH_COOKIE))
    if renewed:
        _set_cookie(response, ACCESS_COOKIE, renewed)
    return user


# ---------- Public endpoints ----------

@app.get("/")
def root():
    return {"service": "Hubly Desk API", "status": "ok"}


@app.get("/test")
def test_database():
    resp = {"backend": "running", "database": "not configured"}
    try:
        if database.db is not None:
            resp["database"] = "connected"
            resp["collections"] = database.db.list_collection_names()
    except PyMongoError as e:
        resp["database"] = f"error: {str(e)[:80]}"
    return resp


# ---------- Auth endpoints ----------

@app.post("/auth/register")
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    auth.register(db, payload.firstName, payload.lastName, str(payload.email),
                  payload.password, payload.confirmPassword)
    return {"message": "User created successfully"}


@app.post("/auth/login")
def login(payload: LoginRequest, response: Response, db: Database = Depends(get_db)):
    user, access_token, refresh_token = auth.login(db, str(payload.email), payload.password)
    _set_cookie(response, ACCESS_COOKIE, access_token)
    _set_cookie(response, REFRESH_COOKIE, refresh_token)
    return {
        "id": str(user["_id"]),
        "name": auth.display_name(user),
        "email": user["email"],
        "isAdmin": user.get("user_role") == "Admin",
    }


@app.get("/auth/logout")
def logout(request: Request, response: Response, user=Depends(get_current_user), db: Database = Depends(get_db)):
    auth.logout(db, request.cookies.get(REFRESH_COOKIE))
    _clear_cookies(response)
    return {"message": "User has Logged out successfully"}


@app.get("/auth/user")
def member_list(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return members.list_members(db)


@app.post("/auth/user")
def member_create(payload: MemberCreateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    members.create_member(db, user, payload.name, str(payload.email))
    return {"message": "User created successfully"}


@app.get("/auth/user/{member_id}")
def member_detail(member_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return members.get_member(db, member_id)


@app.put("/auth/user/{member_id}")
def member_update(member_id: str, payload: MemberUpdateRequest, user=Depends(get_current_user),
                  db: Database = Depends(get_db)):
    logout_required = members.update_member(
        db, user, member_id, payload.firstName, payload.lastName, str(payload.email), payload.phone,
        payload.password, payload.confirmPassword,
    )
    if logout_required:
        resp = JSONResponse(status_code=SessionExpired.status_code,
                            content={"message": "Profile updated successfully, Please login again"})
        if str(user["_id"]) == member_id:
            _clear_cookies(resp)
        return resp
    return {"message": "Profile updated successfully"}


@app.delete("/auth/user/{member_id}")
def member_delete(member_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    members.delete_member(db, user, member_id)
    return {"message": "Member has deleted successfully!"}


# ---------- Lead (chat widget) endpoints ----------

@app.post("/lead/form")
def lead_form(payload: LeadFormRequest, db: Database = Depends(get_db)):
    engine.submit_lead_form(db, payload.leadID, payload.name, payload.email, payload.phone)
    return {"message": "Lead details updated successfully!"}


@app.get("/lead/{lead_id}")
def lead_detail(lead_id: str, db: Database = Depends(get_db)):
    return engine.get_lead_detail(db, lead_id)


@app.post("/lead")
@app.post("/lead/{lead_id}")
def lead_create(payload: LeadMessageRequest, lead_id: Optional[str] = None, db: Database = Depends(get_db)):
    new_lead_id = engine.create_lead(db, payload.message)
    return {"leadID": new_lead_id}


@app.put("/lead")
@app.put("/lead/{lead_id}")
def lead_message(payload: LeadMessageRequest, lead_id: Optional[str] = None, db: Database = Depends(get_db)):
    engine.post_visitor_message(db, payload.leadID or lead_id, payload.message)
    return {"message": "Message sent successfully!"}


# ---------- Chat dashboard endpoints ----------

@app.get("/chat/bot-settings")
def bot_settings(db: Database = Depends(get_db)):
    return settings_store.read_settings(db)


@app.put("/chat/bot-settings")
def bot_settings_update(payload: BotSettingsRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    settings_store.update_settings(db, {
        "header_color": payload.headerColor,
        "background_color": payload.backgroundColor,
        "customized_messages": payload.customizedMessages,
        "form_placeholder": {
            "name": payload.formPlaceholder.name or "Your name",
            "email": payload.formPlaceholder.email or "example@gmail.com",
            "phone": payload.formPlaceholder.phone or "+1 (000) 000-0000",
            "submit_button": payload.formPlaceholder.submitButton or "Thank You!",
        },
        "welcome_message": payload.welcomeMessage,
        "missed_chat_timer": payload.missedChatTimer.model_dump(),
    })
    return {"message": "Chatbot Setting have updated succesfully!"}


@app.get("/chat/analytics")
def lead_analytics(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return analytics.analytics_response(analytics.compute_analytics(db))


@app.get("/chat/ticket")
def ticket_list(page: int = 1, limit: int = 10, status: str = "All", user=Depends(get_current_user),
                db: Database = Depends(get_db)):
    return engine.list_tickets(db, page, limit, status)


@app.get("/chat/leads")
def assigned_leads(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return engine.list_assigned_leads(db, user)


@app.put("/chat/ticket/status")
def ticket_status(payload: StatusUpdateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    engine.update_status(db, payload.leadID, user, payload.status)
    return {"message": "Status updated successfully!"}


@app.get("/chat/ticket/assignee/{ticket_id}")
def assignee_candidates(ticket_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return engine.list_assignee_candidates(db, ticket_id)


@app.put("/chat/ticket/assignee")
@app.put("/chat/ticket/assignee/{ticket_id}")
def ticket_assignee(payload: AssigneeUpdateRequest, ticket_id: Optional[str] = None,
                    user=Depends(get_current_user), db: Database = Depends(get_db)):
    engine.reassign(db, payload.leadID or ticket_id, user, payload.assigneeID)
    return {"message": "Lead assigned to new assignee successfully!"}


@app.get("/chat/ticket/{ticket_id}")
def ticket_conversation(ticket_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return engine.get_conversation(db, ticket_id)


@app.put("/chat/ticket")
@app.put("/chat/ticket/{ticket_id}")
def ticket_message(payload: StaffMessageRequest, ticket_id: Optional[str] = None,
                   user=Depends(get_current_user), db: Database = Depends(get_db)):
    engine.post_staff_message(db, payload.leadID or ticket_id, user, payload.message,
                              idempotency_key=payload.clientMessageID)
    return {"message": "Message sent successfully!"}


@app.delete("/chat/ticket/{ticket_id}")
def ticket_delete(ticket_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    engine.delete_lead(db, ticket_id, user)
    return {"message": "Lead deleted successfully!"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
