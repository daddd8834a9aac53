#
# Copyright 2023 aiofp2 team
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#


class HomeKitException(Exception):
    """Generic exception for all errors raised by aiofp2."""


class AccessoryNotFoundError(HomeKitException):
    """
    Discovery did not see the requested accessory before the timeout expired.
    """


class AlreadyPairedError(HomeKitException):
    """
    The accessory advertises that it is not available for pairing.
    """


class NotPairedError(HomeKitException):
    """
    An operation needs pairing material or a live session and has neither.
    """


class InvalidSetupCodeError(HomeKitException):
    """
    The setup code is not of the form XXX-XX-XXX (or eight digits).
    """


class PairingError(HomeKitException):
    """
    Base class for failures during the pair-setup, pair-verify or pairings exchanges.
    """


class AuthenticationError(PairingError):
    """
    The accessory rejected our proof or credentials.
    """


class UnavailableError(PairingError):
    """
    The accessory cannot accept a new pairing at the moment (already paired).
    """


class BackoffError(PairingError):
    """
    The accessory asked the controller to retry later.
    """


class MaxPeersError(PairingError):
    """
    The accessory has no room for another controller.
    """


class MaxTriesError(PairingError):
    """
    The accessory has seen too many failed pairing attempts.
    """


class BusyError(PairingError):
    """
    Another controller is pairing with the accessory right now.
    """


class InvalidError(PairingError):
    """
    The accessory sent an unexpected or incomplete message.
    """


class IllegalData(PairingError):
    """
    Encrypted data from the accessory could not be verified.
    """


class InvalidAuthTagError(PairingError):
    """
    The auth tag on encrypted pair-verify data did not verify.
    """


class InvalidSignatureError(PairingError):
    """
    The accessory's Ed25519 signature did not verify.
    """


class IncorrectPairingIdError(PairingError):
    """
    The accessory identified itself with a pairing id we did not pair with.
    """


class TransportError(HomeKitException):
    """
    Base class for network and IO failures.
    """


class AccessoryDisconnectedError(TransportError):
    """
    The connection to the accessory was lost or never established.
    """


class ConnectionError(TransportError):
    """
    A TCP connection to the accessory could not be opened.
    """


class TimeoutError(TransportError):
    """
    A network round trip did not complete in time.
    """


class HttpErrorResponse(TransportError):
    """
    The accessory answered a request with a 4xx status.
    """

    def __init__(self, *args, response=None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.response = response


class CharacteristicError(HomeKitException):
    """
    The accessory reported a non-zero HAP status for a characteristic read or write.
    """


class ConfigLoadingError(HomeKitException):
    """
    The pairing file could not be read.
    """


class ConfigSavingError(HomeKitException):
    """
    The pairing file could not be written.
    """


class GatewayError(HomeKitException):
    """
    The home automation gateway rejected a request or could not be reached.
    """
