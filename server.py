"""
Plasa Stamps Backend - FastAPI Server

Links Instagram accounts to addresses with ManyChat verification codes and
issues EIP-712 stamps (account ownership, follower since).
"""

import hmac
import os
import time
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from web3 import Web3

# Load environment variables FIRST!
load_dotenv()

from logger import logger, api_logger, log_activity
from firestore_service import firestore_service
from instagram_code_service import (
    InstagramCodesGenerationService,
    InstagramCodesVerificationService,
    parse_code,
    DEFAULT_ONBOARDING_URL,
)
from stamps_service import StampsService
from user_service import UserService, AlreadyLinkedError

# Config
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
ONBOARDING_URL = os.getenv("ONBOARDING_URL", DEFAULT_ONBOARDING_URL)

app = FastAPI(
    title="Plasa Stamps API",
    description="Instagram account linking and EIP-712 stamps",
    version="0.1.0"
)

allowed_origins = [origin.strip() for origin in CORS_ORIGINS]
if "*" in allowed_origins:
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "x-manychat-token"],
    allow_credentials=allowed_origins != ["*"]
)

logger.info(f"✓ CORS configuration: {allowed_origins}")

# Services (Firestore client and signer are created on first use)
stamps_service = StampsService(firestore_service)
user_service = UserService(firestore_service, stamps_service)
code_generation_service = InstagramCodesGenerationService(firestore_service, onboarding_url=ONBOARDING_URL)
code_verification_service = InstagramCodesVerificationService(firestore_service)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def check_manychat_token(req: Request) -> Optional[JSONResponse]:
    """
    Validate the x-manychat-token header against MANYCHAT_TOKEN.

    Returns:
        None if valid, otherwise the error response to send
    """
    manychat_token = os.getenv("MANYCHAT_TOKEN")
    if not manychat_token:
        api_logger.error("❌ MANYCHAT_TOKEN environment variable is not set")
        return error_response(500, "ManyChat token validation failed")

    provided_token = req.headers.get("x-manychat-token", "")
    if not hmac.compare_digest(provided_token.encode(), manychat_token.encode()):
        log_activity("WARNING", "API", "Invalid ManyChat token", client=req.client.host if req.client else "unknown")
        return error_response(401, "Invalid ManyChat token")

    return None


async def read_json_body(req: Request) -> Optional[dict]:
    try:
        data = await req.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


@app.get("/api/health")
async def health_check():
    """Health-Check Endpoint"""
    return {
        "status": "healthy",
        "service": "Plasa Stamps v0.1",
        "timestamp": int(time.time()),
    }


# ===== INSTAGRAM CODES (ManyChat) =====

@app.post("/instagram-codes/code")
async def get_instagram_code(req: Request):
    """
    Issue a verification code for the Instagram user of a ManyChat webhook

    Request: ManyChat subscriber payload (ig_id, ig_username, name, ...)
    Response: ManyChat v2 dynamic block with the code message
    """
    token_error = check_manychat_token(req)
    if token_error:
        return token_error

    manychat_data = await read_json_body(req)
    if not manychat_data or not str(manychat_data.get("ig_id") or "").isdigit():
        return error_response(400, "Invalid request data")

    try:
        return code_generation_service.get_code_message(manychat_data)
    except Exception as e:
        api_logger.error(f"❌ Error in get_instagram_code: {e}", exc_info=True)
        return error_response(500, "Failed to process Instagram code request")


@app.post("/instagram-codes/verify")
async def verify_instagram_code(req: Request):
    """
    Verify a code and link the Instagram account to the user

    Request:
        {"user_id": "0x...", "code": 123456}
    Response:
        {"status": "success" | "invalid_code" | "expired_code" | ...}
    """
    token_error = check_manychat_token(req)
    if token_error:
        return token_error

    data = await read_json_body(req)
    if not data or not data.get("user_id") or not data.get("code"):
        return error_response(400, "Invalid verification data")

    code = parse_code(data["code"])
    if code is None:
        return error_response(400, "Invalid verification data")

    try:
        status = code_verification_service.verify_code(str(data["user_id"]), code)
        return {"status": status.value}
    except Exception as e:
        api_logger.error(f"❌ Error in verify_instagram_code: {e}", exc_info=True)
        return error_response(500, "Failed to process Instagram code verification")


# ===== USERS =====

@app.get("/users/{user_id}")
async def get_user_data(user_id: str):
    """User data with the available follower-since stamps"""
    if not Web3.is_address(user_id):
        return error_response(400, "Invalid Ethereum address")

    try:
        return user_service.get_user_data(user_id)
    except Exception as e:
        api_logger.error(f"❌ Error retrieving user data for {user_id}: {e}", exc_info=True)
        return error_response(500, "Failed to retrieve user data")


@app.get("/users/{user_id}/ownership")
async def get_account_ownership(user_id: str):
    """AccountOwnership stamp for the user's linked Instagram account"""
    if not Web3.is_address(user_id):
        return error_response(400, "Invalid Ethereum address")

    try:
        ownership = user_service.get_account_ownership(user_id)
    except Exception as e:
        api_logger.error(f"❌ Error signing account ownership for {user_id}: {e}", exc_info=True)
        return error_response(500, "Failed to sign account ownership")

    if ownership is None:
        return error_response(404, "No Instagram account linked")
    return ownership


# ===== LEGACY ADDRESS ENDPOINTS =====

@app.get("/getInstagramUsername")
async def get_instagram_username(userAddress: str = ""):
    if not Web3.is_address(userAddress):
        return error_response(400, "Invalid Ethereum address")

    try:
        return {"instagramUsername": user_service.get_linked_instagram(userAddress)}
    except Exception as e:
        api_logger.error(f"❌ Error in get_instagram_username: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@app.get("/getUserData")
async def get_user_data_by_address(userAddress: str = "", stampAddresses: Optional[List[str]] = Query(None)):
    """
    Legacy user data

    Query:
        userAddress: user address
        stampAddresses: comma separated (or repeated) stamp contract addresses;
                        without it no stamps are signed
    """
    if not Web3.is_address(userAddress):
        return error_response(400, "Invalid Ethereum address")

    addresses = [
        address.strip()
        for value in stampAddresses or []
        for address in value.split(",")
        if address.strip()
    ]

    try:
        if addresses:
            return user_service.get_user_data_from_instagram(userAddress, addresses)

        return {
            "address": userAddress,
            "instagramUsername": user_service.get_linked_instagram(userAddress),
            "availableStamps": None,
        }
    except Exception as e:
        api_logger.error(f"❌ Error in get_user_data_by_address: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@app.post("/linkInstagram")
async def link_instagram(req: Request):
    """
    Link an Instagram username to an address and return the user data

    Request:
        {"userAddress": "0x...", "instagramUsername": "..."}
    """
    data = await read_json_body(req) or {}
    user_address = data.get("userAddress")
    instagram_username = data.get("instagramUsername")

    if not isinstance(user_address, str) or not isinstance(instagram_username, str) or not instagram_username:
        return error_response(400, "Invalid input parameters")
    if not Web3.is_address(user_address):
        return error_response(400, "Invalid Ethereum address")

    try:
        user_service.link_instagram_to_address(user_address, instagram_username)
        return user_service.get_user_data_from_instagram(user_address)
    except AlreadyLinkedError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except Exception as e:
        api_logger.error(f"❌ Error in link_instagram: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@app.get("/checkFollowerSince")
async def check_follower_since(collectionId: str = "", username: str = ""):
    """follower_since timestamp of a follower document, or false"""
    if not collectionId:
        return error_response(400, "Missing collectionId!")
    if not username:
        return error_response(400, "Missing username!")

    try:
        follower_since = user_service.check_follower_since_document(collectionId, username)
        return follower_since or False
    except Exception as e:
        api_logger.error(f"❌ Error in check_follower_since: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        log_level=os.getenv("LOG_LEVEL", "info").lower()
    )
