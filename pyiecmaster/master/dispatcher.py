from pyiecmaster.protocols.asdu import TYP
import pyiecmaster.utils.logger as my_logger

logger = my_logger.get_logger('AsduDispatcher')


def log_single_point(io):
    logger.info('IOA:%s value:%i', io.address, io.value,
                extra=dict(ioa=io.address, type_id=int(io.TYPE_ID), value=int(io.value), quality=int(io.quality)))


def log_measured_value(io):
    logger.info('IOA:%s value:%i time:%s', io.address, io.value, io.timestamp,
                extra=dict(ioa=io.address, type_id=int(io.TYPE_ID), value=io.value, quality=int(io.quality),
                           timestamp=io.timestamp))


def log_protection_event(io):
    logger.info('IOA:%s state:%i QDP:%i', io.address, io.event.state, io.event.qdp,
                extra=dict(ioa=io.address, type_id=int(io.TYPE_ID), state=int(io.event.state),
                           qdp=int(io.event.qdp), elapsed_time=io.elapsed_time, timestamp=io.timestamp))


class AsduDispatcher(object):
    """
    ASDU received handler: logs a summary of every ASDU and one record per
    element of the monitored types. Register it with
    ``session.set_asdu_received_handler(AsduDispatcher())``.
    """
    element_loggers = {
        TYP.M_SP_NA_1: log_single_point,
        TYP.M_ME_TE_1: log_measured_value,
        TYP.M_EP_TD_1: log_protection_event,
    }

    def __call__(self, address, asdu) -> bool:
        try:
            if address is None:
                logger.info('recv ASDU type: %s(%i) cot: %s elements: %i', asdu.type_name, int(asdu.type_id),
                            asdu.cause_name, asdu.number_of_elements)
            else:
                logger.info('slave[%s] recv ASDU type: %s(%i) cot: %s elements: %i', address, asdu.type_name,
                            int(asdu.type_id), asdu.cause_name, asdu.number_of_elements)
            element_logger = self.element_loggers.get(asdu.type_id)
            if element_logger is None:
                return True
            for index in range(asdu.number_of_elements):
                with asdu.decoded(index) as io:
                    if io is None:
                        logger.warning('invalid object! type: %s index: %i', asdu.type_name, index)
                        continue
                    element_logger(io)
        except Exception as e:
            logger.error('dispatch %r failed: %s', asdu, repr(e), exc_info=True)
        return True
